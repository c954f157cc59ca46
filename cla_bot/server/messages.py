"""Label definitions and the text the bot posts to pull requests and signers."""

from __future__ import annotations

from cla_bot.server.github_connector import LabelSpec


PENDING_LABEL = LabelSpec(name="cla:pending", color="fbca04", description="CLA signature required")
SIGNED_LABEL = LabelSpec(name="cla:signed", color="0e8a16", description="CLA has been signed")
EXEMPT_LABEL = LabelSpec(name="cla:exempt", color="5319e7", description="CLA not required")

STATUS_SIGNED = "CLA has been signed"
STATUS_REQUIRED = "CLA signature required"
EXEMPT_ALLOW_LIST = "allow-listed contributor"
EXEMPT_ORG_MEMBER = "organization member"

FOOTER = "<sub>This is an automated message from the CLA bot.</sub>"


def exempt_status(reason: str) -> str:
    return f"CLA not required ({reason})"


def pending_comment(username: str, organization: str) -> str:
    return f"""## Contributor License Agreement

Hey @{username}!

Thank you for your contribution to {organization}! Before we can merge this pull request, we need you to sign our Contributor License Agreement (CLA).

### How to sign

1. **Check your email** for an invitation to sign the CLA
2. Click the signing link in the email to review and sign the document
3. Once signed, this comment will be updated automatically

> :email: A signing invitation has been sent to your email address. If you don't see it, please check your spam folder. Comment `/cla resend` to get a new one.

---

:x: **CLA not signed yet**

{FOOTER}"""


def signed_comment(username: str) -> str:
    return f"""## Contributor License Agreement

Hey @{username}!

:green_heart: **CLA has been signed**

Thank you for signing the Contributor License Agreement! Your pull request can now be reviewed and merged.

---

{FOOTER}"""


def creation_failed_comment(username: str) -> str:
    return f"""## Contributor License Agreement

Hey @{username}!

We need you to sign our CLA before we can merge this pull request. Unfortunately, there was an issue creating your agreement automatically.

Please contact the maintainers for assistance.

---

:x: **CLA not signed yet**"""


def resend_not_needed(requester: str, username: str) -> str:
    return f"@{requester} the CLA for @{username} is already signed, no resend needed. :white_check_mark:"


def resend_confirmed(requester: str, username: str) -> str:
    return f"@{requester} the CLA invitation for @{username} has been sent again. Please check your email. :email:"


def new_invitation_sent(requester: str, username: str) -> str:
    return f"@{requester} a new CLA invitation has been sent to @{username}. Please check your email. :email:"


def resend_failed(requester: str) -> str:
    return f"@{requester} sorry, the CLA invitation could not be sent. Please contact the maintainers for assistance. :x:"


def invitation_subject(organization: str) -> str:
    return f"{organization} Contributor License Agreement"


def invitation_body(name: str, organization: str) -> str:
    return f"""Hello {name},

Thank you for your contribution to {organization}'s open source projects!

Before we can merge your pull request, we need you to sign the Contributor License Agreement (CLA). This is a one-time process that covers all future contributions.

Please review and sign the CLA using the link below.

Best regards,
The {organization} Team"""
