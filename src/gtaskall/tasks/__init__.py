"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskList, TaskState, Priority)
- notes_codec.py: remote <-> local translation, metadata markers in notes
- task_client.py: async Google Tasks REST client
- task_collection.py: the aggregated in-memory collection
- task_views.py: pure view aggregation (date buckets, day windows, grouping)
- task_mutations.py: optimistic mutations with rollback
"""
