"""
Consultant applications.

Submissions arrive from a Jotform webhook, are authenticated (sender IP +
HMAC signature), deduplicated by submission id, mapped onto the applications
table and reviewed by admins (PENDING -> APPROVED | REJECTED).
"""
