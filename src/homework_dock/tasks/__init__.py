"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskMeta, TaskSource)
- task_store.py: per-user task list mirrored into the key/value store
- progress.py: "where was I" record used to resume after a restart
"""
