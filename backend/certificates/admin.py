from django.contrib import admin

from .models import Certificate


# Inputs of the certificate hash plus the identity of the record. They freeze
# as soon as the certificate leaves PENDING.
FROZEN_AFTER_PENDING = (
    "cert_number",
    "student",
    "university",
    "company",
    "issuer",
    "student_number",
    "university_code",
    "company_code",
    "position",
    "department",
    "start_date",
    "end_date",
    "description",
    "evaluation",
    "verify_code",
    "verify_url",
    "qr_code",
)


@admin.register(Certificate)
class CertificateAdmin(admin.ModelAdmin):
    list_display = ("cert_number", "student", "university", "company", "status", "anchor_attempts", "issued_at", "created_at")
    list_filter = ("status", "university", "company")
    search_fields = ("cert_number", "verify_code", "cert_hash", "tx_hash", "student_number", "student__username")
    # Status only moves through the anchoring coordinator.
    readonly_fields = (
        "status",
        "cert_hash",
        "tx_hash",
        "block_number",
        "chain_id",
        "issued_at",
        "anchoring_started_at",
        "anchor_attempts",
        "last_anchor_error",
        "revoked_at",
        "revoke_reason",
        "revoked_by",
        "revoke_tx_hash",
        "revoke_ledger_error",
        "pdf_relpath",
        "pdf_sha256",
        "created_at",
        "updated_at",
    )

    def get_readonly_fields(self, request, obj=None):
        fields = list(super().get_readonly_fields(request, obj))
        if obj is not None and obj.status != Certificate.Status.PENDING:
            fields.extend(f for f in FROZEN_AFTER_PENDING if f not in fields)
        return fields

    def has_delete_permission(self, request, obj=None):
        return False
