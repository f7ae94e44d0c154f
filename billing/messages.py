"""
Tenant-facing SMS texts.
"""

from decimal import Decimal

from billing.calculator import BillBreakdown
from billing.settings import BillingSettings
from common.data_utils import format_amount, ZERO


def build_bill_message(bill: BillBreakdown, settings: BillingSettings) -> str:
    """Monthly bill notice listing only the streams with something due."""
    lines = [
        f"Hello {bill.tenant_name},",
        f"Your {bill.month} bill for {bill.unit_code}:",
        "",
    ]
    if bill.rent_due > ZERO:
        lines.append(f"Rent: KSh {format_amount(bill.rent_due)}")
    if bill.water_due > ZERO:
        lines.append(f"Water: KSh {format_amount(bill.water_due)}")
    if bill.arrears_due > ZERO:
        lines.append(f"Arrears: KSh {format_amount(bill.arrears_due)}")

    lines.extend([
        "",
        f"Total Due: KSh {format_amount(bill.total_due)}",
        f"Pay via paybill {settings.paybill_number}",
        f"Account: {bill.unit_code}",
        "",
        "Due by end of month.",
        f"- {settings.company_name}",
    ])
    return "\n".join(lines)


def build_payment_confirmation(tenant_name: str, unit_code: str, month: str, amount: Decimal,
                               to_rent: Decimal, to_water: Decimal, to_arrears: Decimal,
                               balance: Decimal) -> str:
    message = f"Hi {tenant_name}, KSh {format_amount(amount)} received for {unit_code} ({month}). "

    parts = []
    if to_rent > ZERO:
        parts.append(f"Rent: {format_amount(to_rent)}")
    if to_water > ZERO:
        parts.append(f"Water: {format_amount(to_water)}")
    if to_arrears > ZERO:
        parts.append(f"Arrears: {format_amount(to_arrears)}")
    if parts:
        message += ", ".join(parts) + ". "

    if balance > ZERO:
        message += f"Bal: KSh {format_amount(balance)}"
    else:
        message += "Fully paid!"
    return message


def build_advance_notice(tenant_name: str, unit_code: str, amount: Decimal, months_covered: int) -> str:
    return (
        f"Hello {tenant_name}, your payment of KSh {format_amount(amount)} for {unit_code} "
        f"has been applied as advance for {months_covered} month(s). Thank you!"
    )
