"""Shared type definitions for type checking.

Uses NewType for IDs to provide compile-time type safety - prevents mixing
different ID types (e.g., passing UserID where TaskID expected).

Uses TypeAlias for structural types.
"""

from typing import NewType, TypeAlias

# ID types using NewType for type safety
TaskID = NewType("TaskID", str)
UserID = NewType("UserID", str)
CourseID = NewType("CourseID", str)

# Structural aliases
DispatchStats: TypeAlias = dict[str, int]  # sent / failed / skipped / aborted
SendResult: TypeAlias = dict[str, object]  # {'success': bool, 'email_id' | 'error': str}
