"""
Custom exception classes for form schema builder errors.

This module provides the error taxonomy raised by the schema store, the rule
compiler and the import boundary, plus helpers for logging and displaying
those errors with their context.
"""

import logging
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class FormBuilderError(Exception):
    """
    Base exception for form builder errors.

    Attributes:
        message: Error message
        context: Additional context information
        recovery_suggestions: List of suggested recovery actions
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None,
                 recovery_suggestions: Optional[List[str]] = None):
        self.message = message
        self.context = context or {}
        self.recovery_suggestions = recovery_suggestions or []
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def get_full_details(self) -> Dict[str, Any]:
        """Get complete error details including context and suggestions."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'context': self.context,
            'recovery_suggestions': self.recovery_suggestions
        }


class NotFoundError(FormBuilderError):
    """Raised when a field path does not resolve to a node."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path

        if message is None:
            message = f"Field not found: '{path}'"

        super().__init__(
            message,
            context={'path': path},
            recovery_suggestions=[
                "Check the field path for typos",
                "The field may have been deleted or undone",
            ]
        )


class UnknownBlueprintError(NotFoundError):
    """Raised when a blueprint key is not present in the catalog."""

    def __init__(self, blueprint_key: str):
        self.blueprint_key = blueprint_key
        super().__init__(blueprint_key, f"Unknown field blueprint: '{blueprint_key}'")
        self.context = {'blueprint_key': blueprint_key}
        self.recovery_suggestions = ["Pick a field type from the palette"]


class DanglingReferenceError(NotFoundError):
    """Raised when a rule references a parent field that does not exist."""

    def __init__(self, field_path: str, parent_field: str):
        self.field_path = field_path
        self.parent_field = parent_field
        super().__init__(
            parent_field,
            f"Rule on '{field_path}' references missing field '{parent_field}'"
        )
        self.context = {'field_path': field_path, 'parent_field': parent_field}
        self.recovery_suggestions = [
            "Choose another field in the 'When field' selector",
            "Remove the rule if the referenced field was deleted on purpose",
        ]


class InvalidTargetError(FormBuilderError):
    """Raised when a field is added to something that cannot hold children."""

    def __init__(self, target_path: str, reason: str):
        self.target_path = target_path
        self.reason = reason
        super().__init__(
            f"Invalid target '{target_path or '<root>'}': {reason}",
            context={'target_path': target_path, 'reason': reason},
            recovery_suggestions=[
                "Drop the field onto the canvas or onto a section",
            ]
        )


class InvalidPatchError(FormBuilderError):
    """Raised when an update patch cannot be applied to a field."""

    def __init__(self, path: str, reason: str, keys: Optional[List[str]] = None):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Cannot update '{path or '<root>'}': {reason}",
            context={'path': path, 'reason': reason, 'keys': keys or []},
            recovery_suggestions=[
                "Use add, delete or reorder for structural changes",
                "Check the field type and attribute values",
            ]
        )


class OrderMismatchError(FormBuilderError):
    """Raised when a reorder request is not a permutation of the siblings."""

    def __init__(self, parent_path: str, missing: List[str], unexpected: List[str],
                 duplicates: List[str]):
        self.parent_path = parent_path
        self.missing = missing
        self.unexpected = unexpected
        self.duplicates = duplicates

        problems = []
        if missing:
            problems.append(f"missing {missing}")
        if unexpected:
            problems.append(f"unexpected {unexpected}")
        if duplicates:
            problems.append(f"duplicated {duplicates}")

        super().__init__(
            f"Ordering for '{parent_path or '<root>'}' is not a permutation of its fields: "
            + ", ".join(problems),
            context={
                'parent_path': parent_path,
                'missing': missing,
                'unexpected': unexpected,
                'duplicates': duplicates,
            },
            recovery_suggestions=["Provide every sibling key exactly once"]
        )


class SelfReferenceError(FormBuilderError):
    """Raised when a rule makes a field depend on itself."""

    def __init__(self, field_path: str):
        self.field_path = field_path
        super().__init__(
            f"Field '{field_path}' cannot depend on itself",
            context={'field_path': field_path},
            recovery_suggestions=["Choose a different field in the 'When field' selector"]
        )


class SchemaImportError(FormBuilderError):
    """
    Raised when an imported schema fails structural validation.

    Every violation found is collected so the whole list can be shown at once.
    """

    def __init__(self, violations: List[str], source: Optional[str] = None):
        self.violations = list(violations)
        self.source = source

        count = len(self.violations)
        where = f" from {source}" if source else ""
        super().__init__(
            f"Schema import{where} failed with {count} violation{'s' if count != 1 else ''}",
            context={'source': source, 'violations': self.violations},
            recovery_suggestions=[
                "Fix every listed violation and import again",
                "Check the file is a schema exported by this editor",
            ]
        )


def format_error_for_display(error: FormBuilderError) -> Dict[str, Any]:
    """
    Format a form builder error for user display.

    Args:
        error: FormBuilderError instance

    Returns:
        Dictionary with title, message, severity and suggestions
    """
    error_details = error.get_full_details()

    error_type_info = {
        'NotFoundError': {
            'title': 'Field Not Found',
            'icon': '🔍',
            'severity': 'warning'
        },
        'UnknownBlueprintError': {
            'title': 'Unknown Field Type',
            'icon': '🧩',
            'severity': 'warning'
        },
        'DanglingReferenceError': {
            'title': 'Broken Rule Reference',
            'icon': '🔗',
            'severity': 'warning'
        },
        'InvalidTargetError': {
            'title': 'Invalid Drop Target',
            'icon': '🚫',
            'severity': 'warning'
        },
        'InvalidPatchError': {
            'title': 'Invalid Field Update',
            'icon': '✏️',
            'severity': 'error'
        },
        'OrderMismatchError': {
            'title': 'Invalid Field Order',
            'icon': '↕️',
            'severity': 'error'
        },
        'SelfReferenceError': {
            'title': 'Self-Referencing Rule',
            'icon': '🔁',
            'severity': 'error'
        },
        'SchemaImportError': {
            'title': 'Schema Import Failed',
            'icon': '📋',
            'severity': 'error'
        }
    }

    error_type = error_details['error_type']
    type_info = error_type_info.get(error_type, {
        'title': 'Form Builder Error',
        'icon': '❌',
        'severity': 'error'
    })

    return {
        'title': f"{type_info['icon']} {type_info['title']}",
        'message': error_details['message'],
        'severity': type_info['severity'],
        'context': error_details['context'],
        'recovery_suggestions': error_details['recovery_suggestions'],
        'violations': error_details['context'].get('violations', [])
    }


def log_error_with_context(error: FormBuilderError, operation: str) -> None:
    """
    Log error with full context information.

    Args:
        error: FormBuilderError instance
        operation: Description of the operation that failed
    """
    logger.warning(f"Form builder error during {operation}")
    logger.warning(f"Error type: {type(error).__name__}")
    logger.warning(f"Error message: {error.message}")

    if error.context:
        logger.warning("Error context:")
        for key, value in error.context.items():
            logger.warning(f"  {key}: {value}")

    if error.recovery_suggestions:
        logger.info("Recovery suggestions:")
        for i, suggestion in enumerate(error.recovery_suggestions, 1):
            logger.info(f"  {i}. {suggestion}")
