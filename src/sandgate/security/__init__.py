"""Pre-launch gates for sandboxed agent containers.

- :mod:`skill_review` — LLM review of skill files, cached by content hash
- :mod:`network_policy` — egress allowlist resolved to container launch args
"""

from sandgate.security.network_policy import (
    EgressPolicyResolver,
    check_egress_support,
    get_network_args,
)
from sandgate.security.skill_review import (
    SkillReviewGate,
    review_skill_directory,
    review_skill_file,
)

__all__ = [
    "EgressPolicyResolver",
    "SkillReviewGate",
    "check_egress_support",
    "get_network_args",
    "review_skill_directory",
    "review_skill_file",
]
