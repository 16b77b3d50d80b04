"""
HOOKWATCH - Result Validator
============================
Checks a finished TestResult against the expectations in its configuration.

The default rules cover expected status codes and average response time.
Extra rules implement ValidationRule and are passed at construction or per
call.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional, List, Any, Sequence, Tuple

from hookwatch.core.exceptions import ValidationException
from hookwatch.models.entities import (
    TestResult,
    TestConfiguration,
    ValidationViolation,
    ResponseValidationRule,
)

logger = logging.getLogger(__name__)

_MISSING = object()

_TYPE_NAMES = {
    "string": str,
    "number": (int, float),
    "integer": int,
    "boolean": bool,
    "object": dict,
    "array": list,
    "null": type(None),
}


class ValidationRule(ABC):
    """A single check over a result."""

    @abstractmethod
    def check(self, result: TestResult, configuration: TestConfiguration) -> List[ValidationViolation]:
        pass


class ExpectedStatusCodesRule(ValidationRule):
    """One violation per execution whose status code was not expected."""

    def check(self, result, configuration):
        expected = list(configuration.expected_status_codes)
        violations = []
        for execution in result.executions:
            code = execution.response_status_code
            if code is None or code not in expected:
                violations.append(ValidationViolation(
                    rule="expected_status_codes",
                    expected=expected,
                    actual=code,
                    message=f"Unexpected status code {code} (execution {execution.id})",
                ))
        return violations


class ResponseTimeRule(ValidationRule):

    def check(self, result, configuration):
        limit = configuration.expected_response_time_ms
        if limit and result.avg_response_time_ms > limit:
            return [ValidationViolation(
                rule="expected_response_time_ms",
                expected=limit,
                actual=result.avg_response_time_ms,
                message=f"Average response time {result.avg_response_time_ms:.0f}ms exceeds {limit}ms",
            )]
        return []


def resolve_field_path(body: Any, field_path: str) -> Any:
    """Walk a dotted path through dicts and lists. Returns _MISSING when absent."""
    current = body
    for part in field_path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


class ResponseFieldRule(ValidationRule):
    """
    Field checks over each successful execution's response body.

    Supported validation types: exists, equals, contains, matches, type.
    """

    def __init__(self, rules: Optional[Sequence[ResponseValidationRule]] = None):
        self.rules = list(rules) if rules is not None else None

    def _evaluate(self, rule: ResponseValidationRule, value: Any) -> Tuple[bool, Any]:
        if rule.validation_type == "exists":
            return value is not _MISSING, value is not _MISSING
        if value is _MISSING:
            return False, None

        if rule.validation_type == "equals":
            return value == rule.expected_value, value
        if rule.validation_type == "contains":
            try:
                return rule.expected_value in value, value
            except TypeError:
                return False, value
        if rule.validation_type == "matches":
            pattern = rule.regex_pattern or str(rule.expected_value or "")
            try:
                compiled = re.compile(pattern)
            except re.error as e:
                raise ValidationException(
                    f"Invalid pattern for response field '{rule.field_path}': {pattern}",
                    violations=[{"field_path": rule.field_path, "pattern": pattern}],
                    cause=e,
                )
            return isinstance(value, str) and compiled.search(value) is not None, value
        if rule.validation_type == "type":
            expected_type = _TYPE_NAMES.get(str(rule.expected_value))
            if expected_type is None:
                return False, type(value).__name__
            # bool is an int subclass
            if isinstance(value, bool) and rule.expected_value in ("number", "integer"):
                return False, "boolean"
            return isinstance(value, expected_type), type(value).__name__
        return False, value

    def check(self, result, configuration):
        rules = self.rules if self.rules is not None else list(configuration.response_validation_rules)
        violations = []
        for execution in result.executions:
            if not execution.success:
                continue
            for rule in rules:
                value = resolve_field_path(execution.response_body, rule.field_path)
                passed, actual = self._evaluate(rule, value)
                if not passed:
                    violations.append(ValidationViolation(
                        rule=f"response.{rule.field_path}.{rule.validation_type}",
                        expected=rule.regex_pattern or rule.expected_value,
                        actual=actual,
                        message=f"Response field '{rule.field_path}' failed {rule.validation_type} check (execution {execution.id})",
                    ))
        return violations


class ResultValidator:
    """Applies validation rules to a TestResult."""

    def __init__(self, extra_rules: Optional[Sequence[ValidationRule]] = None):
        self.rules: List[ValidationRule] = [ExpectedStatusCodesRule(), ResponseTimeRule()]
        if extra_rules:
            self.rules.extend(extra_rules)

    def validate(
        self,
        result: TestResult,
        configuration: TestConfiguration,
        extra_rules: Optional[Sequence[ValidationRule]] = None,
    ) -> List[ValidationViolation]:
        """
        Run every rule and record the outcome on the result.

        Returns:
            The violations found
        """
        violations: List[ValidationViolation] = []
        for rule in list(self.rules) + list(extra_rules or []):
            try:
                violations.extend(rule.check(result, configuration))
            except ValidationException as e:
                logger.warning(f"Validation rule {type(rule).__name__} could not run: {e.message}")
                violations.append(ValidationViolation(rule=type(rule).__name__, message=e.message))
            except Exception as e:
                error = ValidationException(f"{type(rule).__name__} raised {type(e).__name__}: {e}", cause=e)
                logger.error(f"Validation rule failed: {error.message}")
                violations.append(ValidationViolation(rule=type(rule).__name__, message=error.message))

        result.validation_errors = violations
        result.validation_passed = not violations

        if violations:
            logger.info(f"Test {result.test_id} failed validation with {len(violations)} violation(s)")
        return violations
