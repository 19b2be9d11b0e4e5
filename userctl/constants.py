"""
Constants shared by the userctl command and its services.

Centralizes exit codes, boolean tokens and report layout values.
"""

# Exit codes
EXIT_SUCCESS = 0
EXIT_INVALID_ARGUMENT = 1  # bad numeric value, unreadable logins file, gear size errors
EXIT_POLICY = 5  # user missing, sub-account policy, feature flag disabled
EXIT_PERSISTENCE = 6  # save failures, lock timeouts, storage retracking
EXIT_BATCH_UNEXPECTED = 10  # unexpected error while continuing a multi-login batch
EXIT_USAGE = 255

# Tokens accepted as "true" by boolean setters (case-insensitive); anything else is false
TRUE_TOKENS = ("true", "yes", "1", "t", "y")

# Capabilities that a parent can push down to its sub-accounts
INHERITABLE_CAPABILITIES = ("gear_sizes",)

# Report layout
REPORT_LABEL_WIDTH = 36
SUBACCOUNT_INDENT = "    "
