from __future__ import annotations

from collections import defaultdict

from django.core.management.base import BaseCommand, CommandError

from certificates.models import Certificate
from certificates.services.anchoring import batch_limit
from certificates.tasks import anchor_certificate_batch


class Command(BaseCommand):
    help = "Queues batch anchoring for PENDING and FAILED certificates, one batch per issued university/company code pair."

    def add_arguments(self, parser):
        parser.add_argument("--university", default="", help="Only certificates of this university code.")
        parser.add_argument("--company", default="", help="Only certificates of this company code.")
        parser.add_argument(
            "--limit",
            type=int,
            default=batch_limit(),
            help="Maximum certificates per batch.",
        )
        parser.add_argument("--dry-run", action="store_true", help="Only print the batches.")

    def handle(self, *args, **options):
        limit = int(options["limit"])
        if limit < 1 or limit > batch_limit():
            raise CommandError(f"--limit must be between 1 and {batch_limit()}")
        dry_run: bool = bool(options["dry_run"])

        qs = Certificate.objects.filter(status__in=Certificate.ANCHORABLE_STATUSES).order_by("pk")
        if options["university"]:
            qs = qs.filter(university_code=options["university"])
        if options["company"]:
            qs = qs.filter(company_code=options["company"])

        groups: dict[tuple[str, str], list[int]] = defaultdict(list)
        for pk, university_code, company_code in qs.values_list("pk", "university_code", "company_code"):
            groups[(university_code, company_code)].append(pk)

        if not groups:
            self.stdout.write("Nothing to anchor.")
            return

        queued = 0
        for (university_code, company_code), ids in sorted(groups.items()):
            for start in range(0, len(ids), limit):
                chunk = ids[start : start + limit]
                self.stdout.write(f"{university_code}/{company_code}: {len(chunk)} certificate(s) {chunk}")
                if not dry_run:
                    anchor_certificate_batch.delay(chunk)
                queued += len(chunk)

        verb = "Would queue" if dry_run else "Queued"
        self.stdout.write(self.style.SUCCESS(f"{verb} {queued} certificate(s)."))
