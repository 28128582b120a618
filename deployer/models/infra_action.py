"""
Infra Action
============
The one decision the deployment stage makes about infrastructure.

Exactly two variants exist. The DESTROY flag is turned into one of them
when the RunConfig is built, so apply and destroy can never both run.
"""
from enum import Enum


class InfraAction(str, Enum):
    APPLY = "apply"
    DESTROY = "destroy"

    @classmethod
    def from_flag(cls, destroy: bool) -> "InfraAction":
        return cls.DESTROY if destroy else cls.APPLY

    def terraform_args(self) -> list[str]:
        """Non-interactive, auto-approved terraform invocation for this action."""
        return ["terraform", self.value, "-auto-approve", "-input=false"]
