"""
Tasker backend package.

Todo management API: hierarchical todos, categories, comments and file
attachments stored in object storage. The FastAPI app lives in
``tasker.main``; the domain entry point is ``tasker.service.TodoService``.
"""
