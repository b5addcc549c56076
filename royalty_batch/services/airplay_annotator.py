"""
Airplay annotation: ownership columns for every play in a report.

Each input row names a phonogram by ``isrc``, with an optional ``date``
(the play date; default the report date).  Output rows copy the input and
add ``play_id``, ``holder_cuit``, ``holder_name``, ``ownership_percentage``
and ``attribution``:

- one row per owner when the phonogram is assigned on the play date;
- one row with no holder and 0% when it is unassigned or in conflict.

Rows without a valid ISRC or date are rejected with the error's code and
reason.  Nothing is written to the database.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any

from royalty_batch.domain.types import AirplayReport, RejectedRow
from royalty_batch.handlers import fields
from royalty_kernel.domain.types import AttributionStatus, PlayAttribution
from royalty_kernel.domain.values import ZERO
from royalty_kernel.exceptions import RoyaltyKernelError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.services.attribution_service import AttributionService

logger = get_logger("batch.airplay")


def _annotate(
    ordinal: int, row: Mapping[str, Any], attribution: PlayAttribution
) -> list[dict[str, Any]]:
    if attribution.status != AttributionStatus.ASSIGNED:
        return [
            {
                **row,
                "play_id": f"{ordinal}_1",
                "holder_cuit": None,
                "holder_name": None,
                "ownership_percentage": ZERO,
                "attribution": attribution.status.value,
            }
        ]
    return [
        {
            **row,
            "play_id": f"{ordinal}_{n}",
            "holder_cuit": share.cuit,
            "holder_name": share.name,
            "ownership_percentage": share.percentage,
            "attribution": attribution.status.value,
        }
        for n, share in enumerate(attribution.shares, start=1)
    ]


def annotate_airplay(
    rows: Iterable[Mapping[str, Any]],
    attribution: AttributionService,
    at_date: date | None = None,
) -> AirplayReport:
    """
    Annotate every airplay row with the owners of its phonogram.

    Args:
        rows: Decoded airplay rows, in report order.
        attribution: Ownership lookup for the caller's session.
        at_date: Report date, used for rows without their own ``date``
            (default: today).
    """
    report_date = at_date or attribution.clock.today()
    seen: dict[tuple[str, date], PlayAttribution] = {}
    annotated: list[dict[str, Any]] = []
    rejected: list[RejectedRow] = []

    for ordinal, row in enumerate(rows, start=1):
        try:
            isrc = fields.isrc(row)
            play_date = fields.optional_date(row, "date", report_date)
        except RoyaltyKernelError as exc:
            rejected.append(
                RejectedRow(row_ordinal=ordinal, row=dict(row), code=exc.code, reason=exc.reason)
            )
            continue

        key = (isrc, play_date)
        if key not in seen:
            seen[key] = attribution.attribute(isrc, play_date)
        annotated.extend(_annotate(ordinal, row, seen[key]))

    logger.info(
        "airplay_annotated",
        extra={
            "report_date": report_date.isoformat(),
            "output_rows": len(annotated),
            "rejected": len(rejected),
            "phonograms": len({isrc for isrc, _ in seen}),
        },
    )
    return AirplayReport(rows=tuple(annotated), rejected=tuple(rejected))
