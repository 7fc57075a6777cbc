# mf_data/services/sip_calculator.py

from typing import List
import numpy_financial as npf
from mf_data.models.portfolio import SipInput, SipProjection, SipScheduleRow


def _monthly_rate(payload: SipInput) -> float:
    return payload.expected_rate / 12 / 100


def _months(payload: SipInput) -> int:
    # nearest whole instalment, never fewer than one
    return max(1, int(round(payload.duration_years * 12)))


def calculate_sip_projection(payload: SipInput) -> SipProjection:
    """
    Maturity value of a monthly SIP.

    Contributions are made at the start of each month (annuity-due), so
    each instalment compounds for the month it is invested in as well.
    No rounding here; callers round for display.
    """
    monthly_rate = _monthly_rate(payload)
    months = _months(payload)
    total_investment = payload.monthly_contribution * months

    if monthly_rate == 0:
        return SipProjection(
            total_investment=total_investment,
            maturity_value=payload.monthly_contribution * months,
            gains=0.0,
        )

    # fv() is negative for a positive outflow; when="begin" adds the trailing (1 + r)
    maturity_value = float(-npf.fv(monthly_rate, months, payload.monthly_contribution, 0, when="begin"))
    return SipProjection(
        total_investment=total_investment,
        maturity_value=maturity_value,
        gains=maturity_value - total_investment,
    )


def project_sip_schedule(payload: SipInput) -> List[SipScheduleRow]:
    """Year-end snapshots of a SIP, compounding month by month."""
    monthly_rate = _monthly_rate(payload)
    total_months = _months(payload)

    rows: List[SipScheduleRow] = []
    total_value = 0.0
    for month in range(1, total_months + 1):
        total_value = (total_value + payload.monthly_contribution) * (1 + monthly_rate)
        if month % 12 == 0 or month == total_months:
            contributions = payload.monthly_contribution * month
            rows.append(SipScheduleRow(
                year=(month + 11) // 12,
                month=month,
                contributions=contributions,
                total_value=total_value,
                gains=total_value - contributions,
            ))
    return rows
