"""UBL 2.1 invoice export.

Serializes invoice state to a UBL Invoice document with lxml. The export reads
state directly; it never goes through actions.

Based on the OASIS UBL 2.1 Invoice schema and the EN 16931 UBL syntax binding:
https://docs.oasis-open.org/ubl/os-UBL-2.1/xsd/maindoc/UBL-Invoice-2.1.xsd
"""

import base64
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import BinaryIO

from lxml import etree

from invoicing.document.schema import (
    Address,
    Bank,
    CorporateRegistrationId,
    InvoiceState,
    LegalEntity,
    LineItem,
    TaxId,
    identity_value,
)
from invoicing.reducers.items import round_amount
from invoicing.shared.config import Settings, get_settings
from invoicing.shared.metrics import invoice_ubl_exports_total

logger = logging.getLogger(__name__)

INVOICE_NS = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
CAC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
NSMAP = {None: INVOICE_NS, "cac": CAC_NS, "cbc": CBC_NS}

UBL_VERSION = "2.1"
INVOICE_TYPE_CODE = "380"  # Commercial invoice (UNCL1001)
PAYMENT_MEANS_CODE = "30"  # Credit transfer (UNCL4461)

PdfSource = bytes | str | Path | BinaryIO


def format_amount(value: Decimal | int | float | str) -> str:
    """Format a monetary amount for UBL output.

    Two decimals when the value is integral or its fifth-place rounding ends
    in three zeros; otherwise as many decimals as the value carries, between
    two and five. Rounding is half-up.
    """
    value = Decimal(str(value))
    if value == value.to_integral_value() or format(round_amount(value, 5), "f").endswith("000"):
        return format(round_amount(value, 2), "f")

    exponent = value.normalize().as_tuple().exponent
    decimals = -exponent if isinstance(exponent, int) and exponent < 0 else 0
    return format(round_amount(value, min(max(2, decimals), 5)), "f")


def format_decimal(value: Decimal) -> str:
    """Plain decimal without exponent or trailing zeros (quantities, percents)."""
    return format(value.normalize(), "f")


def format_date(value: str | None) -> str:
    """Format an ISO date or datetime as YYYY-MM-DD ('' if missing or invalid)."""
    if not value:
        return ""
    try:
        return datetime.fromisoformat(value).date().isoformat()
    except ValueError:
        return ""


def payment_reference(invoice_no: str) -> str:
    """Derive an ISO 11649 structured creditor reference from an invoice number.

    Args:
        invoice_no: Invoice number (non-alphanumerics are dropped)

    Returns:
        Reference like 'RF18INV001', or '' when nothing usable remains
    """
    reference = "".join(ch for ch in invoice_no.upper() if ch.isascii() and ch.isalnum())[:21]
    if not reference:
        return ""
    digits = "".join(str(int(ch, 36)) for ch in f"{reference}RF00")
    check = 98 - int(digits) % 97
    return f"RF{check:02d}{reference}"


def _cac(tag: str) -> str:
    return f"{{{CAC_NS}}}{tag}"


def _cbc(tag: str) -> str:
    return f"{{{CBC_NS}}}{tag}"


def _add(
    parent: etree._Element, tag: str, text: str | None = None, **attrib: str
) -> etree._Element:
    element = etree.SubElement(parent, tag, attrib)
    if text is not None:
        element.text = text
    return element


def _add_if(parent: etree._Element, tag: str, text: str | None, **attrib: str) -> None:
    if text:
        _add(parent, tag, text, **attrib)


def _read_pdf(pdf: PdfSource) -> bytes:
    if isinstance(pdf, bytes):
        return pdf
    if isinstance(pdf, (str, Path)):
        return Path(pdf).read_bytes()
    return pdf.read()


class UBLExporter:
    """Builds UBL Invoice documents from invoice state."""

    def __init__(self, settings: Settings) -> None:
        """Initialize exporter with settings.

        Args:
            settings: Application settings (default currency, customization id, unit code)
        """
        self.settings = settings

    def convert(self, state: InvoiceState, pdf: PdfSource | None = None) -> str:
        """Serialize state to a UBL XML string.

        Args:
            state: Invoice state to export
            pdf: Optional PDF rendering to embed (bytes, path or binary file)

        Returns:
            UTF-8 XML document as text
        """
        try:
            root = self.build(state, pdf)
            xml = etree.tostring(
                root, xml_declaration=True, encoding="UTF-8", pretty_print=True
            ).decode("utf-8")
        except ValueError as e:
            invoice_ubl_exports_total.labels(status="failed").inc()
            logger.error(f"UBL export of invoice '{state.invoice_no}' failed: {e}")
            raise

        invoice_ubl_exports_total.labels(status="success").inc()
        logger.info(
            f"Exported invoice '{state.invoice_no}' to UBL ({len(state.line_items)} lines)"
        )
        return xml

    def build(self, state: InvoiceState, pdf: PdfSource | None = None) -> etree._Element:
        currency = state.currency or self.settings.default_currency
        root = etree.Element(f"{{{INVOICE_NS}}}Invoice", nsmap=NSMAP)

        _add(root, _cbc("UBLVersionID"), UBL_VERSION)
        _add(root, _cbc("CustomizationID"), self.settings.ubl_customization_id)
        _add(root, _cbc("ID"), state.invoice_no)
        _add(root, _cbc("IssueDate"), format_date(state.date_issued))
        _add_if(root, _cbc("DueDate"), format_date(state.date_due))
        _add(root, _cbc("InvoiceTypeCode"), INVOICE_TYPE_CODE, listID="UNCL1001")
        _add_if(root, _cbc("TaxPointDate"), format_date(state.date_delivered))
        _add(root, _cbc("DocumentCurrencyCode"), currency, listID="ISO4217")
        _add_if(
            root,
            _cbc("BuyerReference"),
            state.refs[0].value if state.refs else state.invoice_no,
        )

        if pdf is not None:
            self._add_attachment(root, state, pdf)

        supplier = _add(root, _cac("AccountingSupplierParty"))
        self._add_party(supplier, state.issuer, with_tax_scheme=True)

        customer = _add(root, _cac("AccountingCustomerParty"))
        party = self._add_party(customer, state.payer, with_tax_scheme=False)
        self._add_customer_account(party, state.payer)

        reference = payment_reference(state.invoice_no)
        self._add_payment_means(root, state.issuer, reference)
        self._add_payment_terms(root, state, currency, reference)
        self._add_tax_total(root, state.line_items, currency)
        self._add_monetary_total(root, state.line_items, currency)
        for item in state.line_items:
            self._add_line(root, item, item.currency or currency)
        return root

    def _add_attachment(self, root: etree._Element, state: InvoiceState, pdf: PdfSource) -> None:
        try:
            content = _read_pdf(pdf)
        except (OSError, AttributeError, TypeError) as e:
            logger.warning(f"Could not read PDF attachment, exporting without it: {e}")
            return

        filename = f"{state.invoice_no or 'invoice'}.pdf"
        reference = _add(root, _cac("AdditionalDocumentReference"))
        _add(reference, _cbc("ID"), filename)
        _add(reference, _cbc("DocumentType"), "PrimaryImage")
        attachment = _add(reference, _cac("Attachment"))
        _add(
            attachment,
            _cbc("EmbeddedDocumentBinaryObject"),
            base64.b64encode(content).decode("ascii"),
            mimeCode="application/pdf",
            filename=filename,
        )

    def _add_address(
        self, parent: etree._Element, tag: str, address: Address | None, country: str | None
    ) -> None:
        address = address or Address()
        element = _add(parent, tag)
        _add_if(element, _cbc("StreetName"), address.street_address)
        _add_if(element, _cbc("AdditionalStreetName"), address.extended_address)
        _add_if(element, _cbc("CityName"), address.city)
        _add_if(element, _cbc("PostalZone"), address.postal_code)
        _add_if(element, _cbc("CountrySubentity"), address.state_province)
        country_code = country or address.country
        if country_code:
            _add(_add(element, _cac("Country")), _cbc("IdentificationCode"), country_code)

    def _add_party(
        self, parent: etree._Element, entity: LegalEntity, with_tax_scheme: bool
    ) -> etree._Element:
        party = _add(parent, _cac("Party"))
        identity = identity_value(entity.id)

        _add_if(party, _cbc("EndpointID"), identity)
        if identity:
            _add(_add(party, _cac("PartyIdentification")), _cbc("ID"), identity)
        if entity.name:
            _add(_add(party, _cac("PartyName")), _cbc("Name"), entity.name)
        self._add_address(party, _cac("PostalAddress"), entity.address, entity.country)

        if with_tax_scheme and isinstance(entity.id, TaxId) and entity.country:
            tax_scheme = _add(party, _cac("PartyTaxScheme"))
            _add(tax_scheme, _cbc("CompanyID"), entity.id.tax_id)
            _add(_add(tax_scheme, _cac("TaxScheme")), _cbc("ID"), "VAT")

        if entity.name or isinstance(entity.id, CorporateRegistrationId):
            legal = _add(party, _cac("PartyLegalEntity"))
            _add_if(legal, _cbc("RegistrationName"), entity.name)
            if isinstance(entity.id, CorporateRegistrationId):
                _add(legal, _cbc("CompanyID"), entity.id.corp_reg_id)

        contact = entity.contact_info
        if contact and (contact.tel or contact.email):
            element = _add(party, _cac("Contact"))
            _add_if(element, _cbc("Telephone"), contact.tel)
            _add_if(element, _cbc("ElectronicMail"), contact.email)
        return party

    def _add_customer_account(self, party: etree._Element, payer: LegalEntity) -> None:
        bank = payer.payment_routing.bank if payer.payment_routing else None
        if bank is None or not bank.account_num:
            return
        account = _add(party, _cac("FinancialAccount"))
        _add(account, _cbc("ID"), bank.account_num)
        if bank.swift or bank.bic or bank.name:
            branch = _add(account, _cac("FinancialInstitutionBranch"))
            _add_if(branch, _cbc("ID"), bank.swift or bank.bic)
            _add_if(branch, _cbc("Name"), bank.name)

    def _add_payment_means(self, root: etree._Element, issuer: LegalEntity, reference: str) -> None:
        routing = issuer.payment_routing
        bank = routing.bank if routing else None
        wallet = routing.wallet if routing else None
        if not (wallet and wallet.address) and not (bank and bank.account_num):
            return

        means = _add(root, _cac("PaymentMeans"))
        _add(means, _cbc("PaymentMeansCode"), PAYMENT_MEANS_CODE)
        _add_if(means, _cbc("PaymentID"), reference)
        account = _add(means, _cac("PayeeFinancialAccount"))

        if wallet and wallet.address:
            _add(account, _cbc("ID"), wallet.address, schemeID="walletAddress")
            _add(account, _cbc("ID"), wallet.chain_name or "", schemeID="chainName")
            _add(account, _cbc("ID"), wallet.chain_id or "", schemeID="chainId")
            return
        self._add_bank_account(account, bank)

    def _add_bank_account(self, account: etree._Element, bank: Bank) -> None:
        # Routing codes travel as separate IDs so BIC, SWIFT and ABA survive an import
        _add(account, _cbc("ID"), bank.account_num, schemeID="IBAN")
        _add_if(account, _cbc("ID"), bank.swift, schemeID="SWIFT")
        _add_if(account, _cbc("ID"), bank.aba, schemeID="ABA")
        _add_if(account, _cbc("Name"), bank.beneficiary)

        if bank.bic or bank.name:
            branch = _add(account, _cac("FinancialInstitutionBranch"))
            _add_if(branch, _cbc("ID"), bank.bic, schemeID="BIC")
            _add_if(branch, _cbc("Name"), bank.name)
            address = bank.address
            if any(value for value in address.model_dump().values()):
                self._add_address(branch, _cac("Address"), address, None)

    def _add_payment_terms(
        self, root: etree._Element, state: InvoiceState, currency: str, reference: str
    ) -> None:
        payable = sum((item.total_price_tax_incl for item in state.line_items), Decimal("0"))
        note = f"Please pay {format_amount(payable)} {currency}"
        due_date = format_date(state.date_due)
        if due_date:
            note += f" by {due_date}"
        if reference:
            note += f" quoting payment reference {reference}"
        _add(_add(root, _cac("PaymentTerms")), _cbc("Note"), f"{note}.")

    def _add_tax_total(
        self, root: etree._Element, line_items: list[LineItem], currency: str
    ) -> None:
        if not line_items:
            return

        # Subtotals per distinct rate, in first-seen order
        groups: dict[Decimal, tuple[Decimal, Decimal]] = {}
        for item in line_items:
            taxable, tax = groups.get(item.tax_percent, (Decimal("0"), Decimal("0")))
            groups[item.tax_percent] = (
                taxable + item.total_price_tax_excl,
                tax + item.total_price_tax_incl - item.total_price_tax_excl,
            )

        tax_total = _add(root, _cac("TaxTotal"))
        total_tax = sum((tax for _, tax in groups.values()), Decimal("0"))
        _add(tax_total, _cbc("TaxAmount"), format_amount(total_tax), currencyID=currency)

        for rate, (taxable, tax) in groups.items():
            subtotal = _add(tax_total, _cac("TaxSubtotal"))
            _add(subtotal, _cbc("TaxableAmount"), format_amount(taxable), currencyID=currency)
            _add(subtotal, _cbc("TaxAmount"), format_amount(tax), currencyID=currency)
            self._add_tax_category(subtotal, _cac("TaxCategory"), rate)

    def _add_tax_category(self, parent: etree._Element, tag: str, rate: Decimal) -> None:
        category = _add(parent, tag)
        _add(category, _cbc("ID"), "S" if rate > 0 else "Z")
        _add(category, _cbc("Percent"), format_decimal(rate))
        _add(_add(category, _cac("TaxScheme")), _cbc("ID"), "VAT")

    def _add_monetary_total(
        self, root: etree._Element, line_items: list[LineItem], currency: str
    ) -> None:
        tax_excl = sum((item.total_price_tax_excl for item in line_items), Decimal("0"))
        tax_incl = sum((item.total_price_tax_incl for item in line_items), Decimal("0"))

        total = _add(root, _cac("LegalMonetaryTotal"))
        _add(total, _cbc("LineExtensionAmount"), format_amount(tax_excl), currencyID=currency)
        _add(total, _cbc("TaxExclusiveAmount"), format_amount(tax_excl), currencyID=currency)
        _add(total, _cbc("TaxInclusiveAmount"), format_amount(tax_incl), currencyID=currency)
        _add(total, _cbc("AllowanceTotalAmount"), format_amount(0), currencyID=currency)
        _add(total, _cbc("PayableAmount"), format_amount(tax_incl), currencyID=currency)

    def _add_line(self, root: etree._Element, item: LineItem, currency: str) -> None:
        line = _add(root, _cac("InvoiceLine"))
        _add(line, _cbc("ID"), item.id)
        _add(
            line,
            _cbc("InvoicedQuantity"),
            format_decimal(item.quantity),
            unitCode=self.settings.ubl_unit_code,
        )
        _add(
            line,
            _cbc("LineExtensionAmount"),
            format_amount(item.total_price_tax_excl),
            currencyID=currency,
        )
        line_tax = _add(line, _cac("TaxTotal"))
        _add(
            line_tax,
            _cbc("TaxAmount"),
            format_amount(item.total_price_tax_incl - item.total_price_tax_excl),
            currencyID=currency,
        )

        element = _add(line, _cac("Item"))
        _add(element, _cbc("Description"), item.description)
        _add(element, _cbc("Name"), item.description)
        self._add_tax_category(element, _cac("ClassifiedTaxCategory"), item.tax_percent)

        price = _add(line, _cac("Price"))
        _add(
            price, _cbc("PriceAmount"), format_amount(item.unit_price_tax_excl), currencyID=currency
        )


def export_ubl(
    state: InvoiceState, settings: Settings | None = None, pdf: PdfSource | None = None
) -> str:
    """Export invoice state to a UBL XML string."""
    return UBLExporter(settings or get_settings()).convert(state, pdf)
