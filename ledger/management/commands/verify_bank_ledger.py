from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from ledger.models import BankAccount, BankBalanceEntry
from ledger.services import reconcile


class Command(BaseCommand):
    help = "Replay every owner's bank balance history and report divergence from the cached balance."

    def add_arguments(self, parser):
        parser.add_argument(
            "--owner",
            help="Only verify the owner with this username.",
        )

    def _owners(self, username):
        User = get_user_model()
        if username:
            owner = User.objects.filter(username=username).first()
            if owner is None:
                raise CommandError(f"No owner with username '{username}'.")
            return [owner]

        owner_ids = set(BankAccount.objects.values_list("owner_id", flat=True))
        owner_ids.update(BankBalanceEntry.objects.values_list("owner_id", flat=True).distinct())
        return list(User.objects.filter(id__in=owner_ids).order_by("username"))

    def handle(self, *args, **options):
        owners = self._owners(options.get("owner"))

        divergent = 0
        for owner in owners:
            report = reconcile(owner)
            if report.consistent:
                continue
            divergent += 1
            self.stdout.write(
                self.style.WARNING(
                    f"- {owner.username}: cached={report.cached_balance} replayed={report.replayed_balance} "
                    f"broken_entries={len(report.broken_entries)}"
                )
            )
            for broken in report.broken_entries:
                self.stdout.write(
                    f"    sequence {broken['sequence']}: recorded {broken['recorded_balance']}, expected {broken['expected_balance']}"
                )

        if not divergent:
            self.stdout.write(self.style.SUCCESS(f"Checked {len(owners)} owner(s). All bank ledgers are consistent."))
            return

        self.stdout.write(self.style.WARNING(f"Found {divergent} divergent bank ledger(s) across {len(owners)} owner(s)."))
