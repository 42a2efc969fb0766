from ledger.models import MergeRecord, ReconcileReport


def format_merge(record: MergeRecord) -> str:
    return f'#{record.transfer_id}: "{record.description}" ({record.currency_code} {record.display_amount})'


def format_report(report: ReconcileReport) -> list[str]:
    lines = [
        f"Start date is {report.start_date.isoformat()}",
        f"End date is {report.end_date.isoformat()}",
        f"Considered {report.deposits_considered} deposit(s): "
        f"{report.merged} merged, {report.skipped} skipped, {report.unmatched} without a match.",
    ]
    if report.merged == 0:
        lines.append("No deposits were matched to withdrawals.")
        return lines

    lines.append(f"Merged {report.merged} deposit(s) into transfers.")
    lines.extend(format_merge(record) for record in report.merges)
    return lines
