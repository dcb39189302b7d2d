"""
Scan pipeline.

Components:
- artifacts.py: captured file bytes + content type
- compress.py: Pillow-based JPEG downscaling before upload
- upload_client.py: httpx multipart upload and response parsing
- signature.py: worksheet fingerprint (image aHash + text hash)
- pipeline.py: run orchestration and chat settlement
"""
