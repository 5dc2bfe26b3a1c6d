"""Receipt generation and Merchant-of-Record compliance reporting."""

import logging

from payment_core.config import BusinessSettings
from payment_core.models.receipt import (
    BusinessDetails,
    ComplianceResult,
    CurrencyBreakdown,
    CustomerDetails,
    MoRReport,
    Receipt,
    TaxInfo,
)
from payment_core.models.transaction import Transaction
from payment_core.utils.amount import format_amount

logger = logging.getLogger(__name__)

MERCHANT_OF_RECORD = "Lemon Squeezy"

# Lemon Squeezy collects tax as Merchant of Record; only the label varies
TAX_TYPES: dict[str, str] = {
    "USD": "Sales Tax",
    "EUR": "VAT",
}


class ReceiptService:
    """Builds receipts for ledger transactions."""

    def __init__(self, business: BusinessSettings | None = None) -> None:
        business = business or BusinessSettings()
        self.business_details = BusinessDetails(
            name=business.name,
            address=business.address,
            tax_id=business.tax_id,
            email=business.email,
        )

    @staticmethod
    def calculate_tax_info(amount: float, currency: str) -> TaxInfo:
        rate = 0.0
        return TaxInfo(
            rate=rate,
            amount=amount * (rate / 100),
            type=TAX_TYPES.get(currency.upper(), "No Tax"),
        )

    def generate_receipt(self, transaction: Transaction) -> Receipt:
        """Build a receipt with ID ``receipt_<transaction id>``."""
        customer = None
        if transaction.customer_info:
            customer = CustomerDetails(
                name=transaction.customer_info.name,
                email=transaction.customer_info.email,
            )
        return Receipt(
            id=f"receipt_{transaction.id}",
            transaction_id=transaction.id,
            amount=transaction.amount,
            currency=transaction.currency,
            business_details=self.business_details,
            customer_details=customer,
            tax_info=self.calculate_tax_info(transaction.amount, transaction.currency),
        )

    def generate_receipt_text(self, receipt: Receipt) -> str:
        """Plain-text rendering of a receipt."""
        business = receipt.business_details
        rule = "=" * 50
        section = "-" * 30
        lines = [
            rule,
            "PAYMENT RECEIPT",
            rule,
            "",
            f"Receipt ID: {receipt.id}",
            f"Transaction ID: {receipt.transaction_id}",
            f"Date: {receipt.issued_at:%Y-%m-%d}",
            f"Time: {receipt.issued_at:%H:%M:%S} UTC",
            "",
            "BUSINESS INFORMATION:",
            section,
            business.name,
            business.address,
            f"Tax ID: {business.tax_id}",
            f"Email: {business.email}",
            "",
        ]

        customer = receipt.customer_details
        if customer and (customer.name or customer.email):
            lines += ["CUSTOMER INFORMATION:", section]
            if customer.name:
                lines.append(f"Name: {customer.name}")
            if customer.email:
                lines.append(f"Email: {customer.email}")
            lines.append("")

        lines += [
            "PAYMENT DETAILS:",
            section,
            f"Amount: {format_amount(receipt.amount, receipt.currency)}",
        ]
        tax = receipt.tax_info
        if tax.amount > 0:
            lines.append(f"Tax ({tax.rate:g}%): {format_amount(tax.amount, receipt.currency)}")
            lines.append(
                f"Total: {format_amount(receipt.amount + tax.amount, receipt.currency)}"
            )

        lines += [
            "",
            "MERCHANT OF RECORD:",
            section,
            MERCHANT_OF_RECORD,
            f"This transaction was processed by {MERCHANT_OF_RECORD}",
            "as the Merchant of Record.",
            "",
            "Thank you for your payment!",
            "",
            f"For questions, contact: {business.email}",
            rule,
        ]
        return "\n".join(lines)

    @staticmethod
    def validate_receipt_compliance(receipt: Receipt) -> ComplianceResult:
        issues: list[str] = []
        business = receipt.business_details
        if not business.name:
            issues.append("Business name is required")
        if not business.address:
            issues.append("Business address is required")
        if not business.tax_id:
            issues.append("Business tax ID is required")
        if not receipt.transaction_id:
            issues.append("Transaction ID is required")
        if receipt.amount <= 0:
            issues.append("Amount must be greater than zero")
        if not receipt.currency:
            issues.append("Currency is required")
        if receipt.tax_info.rate < 0:
            issues.append("Tax rate cannot be negative")
        return ComplianceResult(valid=not issues, issues=issues)

    def generate_mor_report(self, transactions: list[Transaction]) -> MoRReport:
        """Totals per currency plus any receipt compliance issues."""
        report = MoRReport(total_transactions=len(transactions))
        for transaction in transactions:
            receipt = self.generate_receipt(transaction)
            compliance = self.validate_receipt_compliance(receipt)
            if not compliance.valid:
                report.compliance_issues.append(
                    f"Transaction {transaction.id}: {', '.join(compliance.issues)}"
                )

            report.total_amount += transaction.amount
            report.total_tax += receipt.tax_info.amount

            breakdown = report.currency_breakdown.setdefault(
                transaction.currency, CurrencyBreakdown()
            )
            breakdown.count += 1
            breakdown.amount += transaction.amount
            breakdown.tax += receipt.tax_info.amount

        if report.compliance_issues:
            logger.warning(
                "MoR report found %d compliance issues", len(report.compliance_issues)
            )
        return report
