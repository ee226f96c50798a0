from django.db import models


class Organization(models.Model):
    code = models.CharField(max_length=50, unique=True, verbose_name="Code")
    name = models.CharField(max_length=200, verbose_name="Name")
    address = models.CharField(max_length=255, blank=True, default="", verbose_name="Address")
    contact_email = models.EmailField(blank=True, default="", verbose_name="Contact email")
    is_verified = models.BooleanField(default=False, verbose_name="Verified")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["name"]

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class University(Organization):
    class Meta(Organization.Meta):
        verbose_name = "University"
        verbose_name_plural = "Universities"


class Company(Organization):
    class Meta(Organization.Meta):
        verbose_name = "Company"
        verbose_name_plural = "Companies"
