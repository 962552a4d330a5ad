"""Human readable verbs for validation rule identifiers.

Keys are pydantic-core error types plus the app's custom rules; values
complete a sentence that starts with the quoted field name.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType


FALLBACK_VERB = "is invalid"

EMAIL_RULE = "email"

VERBS: Mapping[str, str] = MappingProxyType(
    {
        # presence
        "missing": "is required",
        "missing_argument": "is required",
        "missing_keyword_only_argument": "is required",
        "missing_positional_only_argument": "is required",
        "none_required": "must be null",
        "extra_forbidden": "is not allowed",
        "unexpected_keyword_argument": "is not allowed",
        "unexpected_positional_argument": "is not allowed",
        "frozen_field": "cannot be changed",
        "frozen_instance": "cannot be changed",
        # strings
        "string_type": "must be a string",
        "string_sub_type": "must be a string",
        "string_unicode": "must be a valid unicode string",
        "string_too_short": "is too short",
        "string_too_long": "is too long",
        "string_pattern_mismatch": "has an invalid format",
        "str_type": "must be a string",
        EMAIL_RULE: "must be a valid email address",
        # numbers
        "int_type": "must be an integer",
        "int_parsing": "must be an integer",
        "int_parsing_size": "is out of range",
        "int_from_float": "must be an integer",
        "float_type": "must be a number",
        "float_parsing": "must be a number",
        "finite_number": "must be a finite number",
        "greater_than": "is too small",
        "greater_than_equal": "is too small",
        "less_than": "is too large",
        "less_than_equal": "is too large",
        "multiple_of": "must be a multiple of the given value",
        "decimal_type": "must be a decimal number",
        "decimal_parsing": "must be a decimal number",
        "decimal_max_digits": "has too many digits",
        "decimal_max_places": "has too many decimal places",
        "decimal_whole_digits": "has too many digits before the decimal point",
        "complex_type": "must be a complex number",
        "complex_str_parsing": "must be a complex number",
        # booleans and literals
        "bool_type": "must be a boolean",
        "bool_parsing": "must be a boolean",
        "literal_error": "must be one of the allowed values",
        "enum": "must be one of the allowed values",
        # identifiers and urls
        "uuid_type": "must be a valid UUID",
        "uuid_parsing": "must be a valid UUID",
        "uuid_version": "has an unsupported UUID version",
        "url_type": "must be a valid URL",
        "url_parsing": "must be a valid URL",
        "url_syntax_violation": "must be a valid URL",
        "url_too_long": "is too long",
        "url_scheme": "has an unsupported URL scheme",
        # bytes
        "bytes_type": "must be bytes",
        "bytes_too_short": "is too short",
        "bytes_too_long": "is too long",
        "bytes_invalid_encoding": "has an invalid encoding",
        # containers
        "dict_type": "must be an object",
        "model_type": "must be an object",
        "model_attributes_type": "must be an object",
        "dataclass_type": "must be an object",
        "dataclass_exact_type": "must be an object",
        "mapping_type": "must be an object",
        "list_type": "must be an array",
        "tuple_type": "must be an array",
        "set_type": "must be an array",
        "set_item_not_hashable": "contains an invalid item",
        "frozen_set_type": "must be an array",
        "iterable_type": "must be an array",
        "iteration_error": "must be an array",
        "too_short": "has too few items",
        "too_long": "has too many items",
        # json
        "json_invalid": "must be valid JSON",
        "json_type": "must be valid JSON",
        # dates and times
        "date_type": "must be a valid date",
        "date_parsing": "must be a valid date",
        "date_from_datetime_parsing": "must be a valid date",
        "date_from_datetime_inexact": "must be a date without a time part",
        "date_past": "must be in the past",
        "date_future": "must be in the future",
        "time_type": "must be a valid time",
        "time_parsing": "must be a valid time",
        "datetime_type": "must be a valid datetime",
        "datetime_parsing": "must be a valid datetime",
        "datetime_object_invalid": "must be a valid datetime",
        "datetime_from_date_parsing": "must be a valid datetime",
        "datetime_past": "must be in the past",
        "datetime_future": "must be in the future",
        "timezone_naive": "must not have a timezone",
        "timezone_aware": "must have a timezone",
        "timezone_offset": "has an unexpected timezone offset",
        "time_delta_type": "must be a valid duration",
        "time_delta_parsing": "must be a valid duration",
        # unions and custom validators
        "union_tag_invalid": "has an unsupported type tag",
        "union_tag_not_found": "is missing its type tag",
        "value_error": "is invalid",
        "assertion_error": "is invalid",
        "is_instance_of": "has the wrong type",
        "is_subclass_of": "has the wrong type",
        "callable_type": "must be callable",
        "arguments_type": "has invalid arguments",
        "needs_python_object": "has the wrong type",
        "invalid_key": "has an invalid key",
        "get_attribute_error": "is invalid",
        "no_such_attribute": "is not allowed",
        "recursion_loop": "is nested too deeply",
    }
)
