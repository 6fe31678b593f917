"""
User-facing guidance for publishing domain verification DNS records.
"""

from typing import List

from .models import DnsRecord, VerificationStatus

_RECORD_DESCRIPTIONS = {
    'TXT': 'Domain ownership verification',
    'CNAME': 'Email authentication (DKIM)',
    'MX': 'Mail server routing',
}

_COMMON_TIPS = [
    "Ensure DNS records are added exactly as shown, including any trailing dots",
    "Check that there are no extra spaces in the record values",
    "DNS changes can take time to propagate - wait at least 15 minutes before checking again",
]


def record_description(record: DnsRecord) -> str:
    """Description of a record, falling back to one derived from its type."""
    if record.description:
        return record.description
    return _RECORD_DESCRIPTIONS.get(record.record_type, 'Email service configuration')


def dns_instructions(records: List[DnsRecord]) -> List[str]:
    """Step-by-step instructions for adding the given records."""
    instructions = [
        "To verify your domain ownership, add the following DNS records to your domain's DNS settings.",
        "1. Log in to your domain registrar or DNS hosting provider.",
        "2. Navigate to the DNS management section for your domain.",
        "3. Add the following DNS records exactly as shown:",
    ]

    for index, record in enumerate(records, start=1):
        instructions.extend([
            f"   Record {index}:",
            f"   - Type: {record.record_type}",
            f"   - Name: {record.name}",
            f"   - Value: {record.value}",
            f"   - Purpose: {record_description(record)}",
        ])

    instructions.extend([
        "4. Save your DNS changes.",
        "5. DNS propagation can take up to 72 hours, but typically completes within 15-30 minutes.",
        "6. Return to this page to check your verification status.",
    ])
    return instructions


def estimated_verification_time(status: VerificationStatus) -> str:
    if status is VerificationStatus.PENDING:
        return ("Verification typically completes within 15-30 minutes after DNS records "
                "are added, but can take up to 72 hours.")
    if status is VerificationStatus.VERIFIED:
        return "Domain is verified and ready for sending emails."
    if status is VerificationStatus.FAILED:
        return "Verification failed. Please check your DNS records and try again."
    return "Verification timed out. Please restart domain verification."


def troubleshooting_tips(status: VerificationStatus) -> List[str]:
    if status is VerificationStatus.PENDING:
        return _COMMON_TIPS + [
            "Use a DNS lookup tool to verify your records are visible",
            "Contact your DNS provider if you're having trouble adding records",
        ]
    if status is VerificationStatus.FAILED:
        return [
            "Double-check that all DNS records are correctly configured",
            "Remove any duplicate or conflicting DNS records",
            "Ensure you have the correct permissions to modify DNS settings",
            "Try removing and re-adding the DNS records",
            "Contact support if the issue persists after verifying your DNS configuration",
        ]
    if status is VerificationStatus.VERIFIED:
        return [
            "Your domain is successfully verified!",
            "You can now add email addresses under this domain",
            "Keep your DNS records in place to maintain verification status",
        ]
    return list(_COMMON_TIPS)
