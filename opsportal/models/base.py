"""
Column helpers shared by the table models
"""

from enum import Enum
from typing import Type

from sqlalchemy import Enum as SQLEnum


def enum_column(enum_cls: Type[Enum], length: int = 32) -> SQLEnum:
    """Store enum values (not member names) in a plain VARCHAR column"""
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=length,
        validate_strings=True,
    )
