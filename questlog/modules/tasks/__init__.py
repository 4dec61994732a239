"""
Tasks Module
============

Services:
- TaskService: Task completion rewards and reversal
"""

from .service import TaskService

__all__ = ["TaskService"]
