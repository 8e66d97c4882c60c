"""Configuration for nexus-verify: defaults, then ``nexus-verify.toml``, a profile overlay,
``NEXUS_VERIFY_*`` environment variables and finally CLI overrides."""

from nexus_verify.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
    normalize_paths,
)
from nexus_verify.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PATH_FIELDS",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "redact_config",
    "validate_config",
]
