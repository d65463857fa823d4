"""UBL 2.1 invoice import.

Turns a UBL Invoice document into the same action sequence an editor would
issue: header, issuer, issuer payment routing, payer, payer bank, then one
ADD_LINE_ITEM per invoice line. The whole sequence is built and applied to a
scratch copy first, so a failed import never leaves a half-imported invoice.

Element lookups match on local names, so documents with or without namespace
prefixes (or with a default namespace) are read the same way.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from lxml import etree

from invoicing.document.actions import (
    Action,
    add_line_item,
    edit_invoice,
    edit_issuer,
    edit_issuer_bank,
    edit_issuer_wallet,
    edit_payer,
    edit_payer_bank,
)
from invoicing.document.errors import ActionValidationError, InvoiceError, UBLParseError
from invoicing.document.reducer import InvoiceDocument
from invoicing.document.schema import InvoiceState
from invoicing.shared.config import Settings
from invoicing.shared.metrics import invoice_ubl_imports_total

logger = logging.getLogger(__name__)

XML_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)

# (payload field, UBL element) pairs of a postal address
ADDRESS_ELEMENTS = (
    ("street_address", ("StreetName",)),
    ("extended_address", ("AdditionalStreetName",)),
    ("city", ("CityName",)),
    ("postal_code", ("PostalZone",)),
    ("state_province", ("CountrySubentity",)),
    ("country", ("Country", "IdentificationCode")),
)

# Bank address written inline with schemeID markers instead of a cac:Address block:
# (payload field, UBL element, schemeID)
TAGGED_BANK_ADDRESS = (
    ("street_address", "StreetName", "streetAddress"),
    ("extended_address", "AdditionalStreetName", "extendedAddress"),
    ("city", "CityName", "city"),
    ("state_province", "CountrySubentity", "stateProvince"),
    ("postal_code", "PostalZone", "postalCode"),
    ("country", "IdentificationCode", "country"),
)


def _xpath(*path: str, descendant: bool = False) -> str:
    steps = "/".join(f"*[local-name()='{tag}']" for tag in path)
    return f".//{steps}" if descendant else f"./{steps}"


def _find_all(node: etree._Element, *path: str, descendant: bool = False) -> list[etree._Element]:
    return node.xpath(_xpath(*path, descendant=descendant))


def _find(node: etree._Element, *path: str, descendant: bool = False) -> etree._Element | None:
    found = _find_all(node, *path, descendant=descendant)
    return found[0] if found else None


def _text(
    node: etree._Element | None,
    *path: str,
    scheme: str | None = None,
    descendant: bool = False,
) -> str | None:
    """Return the stripped text of the first matching element, or None.

    Args:
        node: Element to search from (None yields None)
        *path: Local names of the element path below ``node``
        scheme: Only accept elements with this schemeID attribute
        descendant: Match the path at any depth instead of directly below ``node``
    """
    if node is None:
        return None
    for element in _find_all(node, *path, descendant=descendant):
        if scheme is not None and element.get("schemeID") != scheme:
            continue
        text = (element.text or "").strip()
        return text or None
    return None


def _first(*values: str | None) -> str | None:
    for value in values:
        if value:
            return value
    return None


def _compact(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def _decimal(text: str | None, element: str) -> Decimal:
    if text is None:
        return Decimal("0")
    try:
        value = Decimal(text)
    except InvalidOperation as e:
        raise UBLParseError(f"Invalid UBL document: {element} '{text}' is not a number") from e
    if not value.is_finite():
        raise UBLParseError(f"Invalid UBL document: {element} '{text}' is not a finite number")
    return value


class UBLImporter:
    """Converts UBL Invoice documents into invoice actions."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def parse(self, xml: str | bytes) -> etree._Element:
        """Parse a document and locate its Invoice element.

        Raises:
            UBLParseError: If the XML is malformed or has no Invoice element
        """
        if isinstance(xml, str):
            xml = xml.encode("utf-8")
        try:
            root = etree.fromstring(xml, XML_PARSER)
        except etree.XMLSyntaxError as e:
            raise UBLParseError(f"Invalid XML: {e}") from e

        if etree.QName(root).localname == "Invoice":
            return root
        invoice = _find(root, "Invoice", descendant=True)
        if invoice is None:
            raise UBLParseError("Invalid UBL document: no Invoice element found")
        return invoice

    def convert(self, xml: str | bytes) -> list[Action]:
        """Build the action sequence that reconstructs the invoice.

        Args:
            xml: UBL Invoice document

        Returns:
            Actions in dispatch order

        Raises:
            UBLParseError: If the document cannot be read, or a value it carries
                does not fit its action payload
        """
        invoice = self.parse(xml)
        try:
            return self._actions(invoice)
        except ActionValidationError as e:
            raise UBLParseError(f"Invalid UBL document: {e}") from e

    def _actions(self, invoice: etree._Element) -> list[Action]:
        actions = [self._header(invoice)]

        supplier = _find(invoice, "AccountingSupplierParty", "Party")
        if supplier is not None:
            actions.append(edit_issuer(self._party(supplier)))
            account = _find(invoice, "PaymentMeans", "PayeeFinancialAccount")
            if account is not None:
                actions.append(self._payee_account(account))

        customer = _find(invoice, "AccountingCustomerParty", "Party")
        if customer is not None:
            actions.append(edit_payer(self._party(customer)))
            account = _find(customer, "FinancialAccount")
            if account is not None:
                actions.append(edit_payer_bank(self._customer_account(account)))

        document_currency = _text(invoice, "DocumentCurrencyCode")
        for index, line in enumerate(_find_all(invoice, "InvoiceLine"), start=1):
            actions.append(self._line(line, index, document_currency))
        return actions

    def load(self, document: InvoiceDocument, xml: str | bytes) -> InvoiceState:
        """Import a UBL document into an invoice document.

        The actions are dispatched to a scratch copy of the document; its state
        and operation log replace the document's only once every action went
        through.

        Raises:
            UBLParseError: If the document cannot be read (nothing is dispatched)
            ReducerError: If an action is rejected and raising is enabled
                (the document is left unchanged)
        """
        scratch = InvoiceDocument(
            settings=document.settings, state=document.state, reducer=document.reducer
        )
        scratch.operations = list(document.operations)
        try:
            actions = self.convert(xml)
            state = scratch.dispatch_all(actions)
        except InvoiceError as e:
            invoice_ubl_imports_total.labels(status="failed").inc()
            logger.error(f"UBL import failed: {e}")
            raise

        document.state = scratch.state
        document.operations = scratch.operations
        invoice_ubl_imports_total.labels(status="success").inc()
        logger.info(
            f"Imported UBL invoice '{state.invoice_no}' "
            f"({len(actions)} actions, {len(state.line_items)} line items)"
        )
        return state

    def _header(self, invoice: etree._Element) -> Action:
        return edit_invoice(
            _compact(
                {
                    "invoice_no": _text(invoice, "ID"),
                    "date_issued": _text(invoice, "IssueDate"),
                    "date_due": _first(
                        _text(invoice, "DueDate"),
                        _text(invoice, "PaymentDueDate", descendant=True),
                    ),
                    "date_delivered": _first(
                        _text(invoice, "ActualDeliveryDate", descendant=True),
                        _text(invoice, "TaxPointDate"),
                    ),
                    "currency": _text(invoice, "DocumentCurrencyCode"),
                }
            )
        )

    def _party(self, party: etree._Element) -> dict[str, Any]:
        """Basic info payload of a supplier or customer party.

        A corporate registration number (PartyLegalEntity/CompanyID) wins over
        tax and generic identifiers.
        """
        corp_reg_id = _text(party, "PartyLegalEntity", "CompanyID")
        identity = _first(
            _text(party, "PartyTaxScheme", "CompanyID"),
            _text(party, "PartyIdentification", "ID"),
            _text(party, "EndpointID"),
        )
        address = _find(party, "PostalAddress")

        payload: dict[str, Any] = {
            "name": _first(
                _text(party, "PartyName", "Name"),
                _text(party, "PartyLegalEntity", "RegistrationName"),
            ),
            "tel": _text(party, "Contact", "Telephone"),
            "email": _text(party, "Contact", "ElectronicMail"),
        }
        if corp_reg_id:
            payload["corp_reg_id"] = corp_reg_id
        else:
            payload["id"] = identity
        for field, path in ADDRESS_ELEMENTS:
            payload[field] = _text(address, *path)
        return _compact(payload)

    def _payee_account(self, account: etree._Element) -> Action:
        wallet_address = _text(account, "ID", scheme="walletAddress")
        if wallet_address:
            return edit_issuer_wallet(
                _compact(
                    {
                        "address": wallet_address,
                        "chain_name": _text(account, "ID", scheme="chainName"),
                        "chain_id": _text(account, "ID", scheme="chainId"),
                    }
                )
            )

        branch = _find(account, "FinancialInstitutionBranch")
        payload: dict[str, Any] = {
            "account_num": _first(_text(account, "ID", scheme="IBAN"), _text(account, "ID")),
            "beneficiary": _text(account, "Name"),
            "bic": _first(
                _text(branch, "ID"),
                _text(branch, "FinancialInstitution", "ID"),
                _text(account, "ID", scheme="BIC"),
            ),
            "swift": _text(account, "ID", scheme="SWIFT"),
            "aba": _text(account, "ID", scheme="ABA"),
            "name": _first(
                _text(branch, "Name"),
                _text(branch, "FinancialInstitution", "Name"),
            ),
        }

        address = _find(branch, "Address") if branch is not None else None
        if address is not None:
            for field, path in ADDRESS_ELEMENTS:
                payload[field] = _text(address, *path)
        else:
            for field, tag, scheme in TAGGED_BANK_ADDRESS:
                payload[field] = _text(account, tag, scheme=scheme, descendant=True)
        return edit_issuer_bank(_compact(payload))

    def _customer_account(self, account: etree._Element) -> dict[str, Any]:
        branch = _find(account, "FinancialInstitutionBranch")
        return _compact(
            {
                "account_num": _text(account, "ID"),
                "name": _first(
                    _text(branch, "Name"),
                    _text(branch, "FinancialInstitution", "Name"),
                ),
                "swift": _first(
                    _text(branch, "ID"),
                    _text(branch, "FinancialInstitution", "ID"),
                ),
            }
        )

    def _line(self, line: etree._Element, index: int, document_currency: str | None) -> Action:
        """ADD_LINE_ITEM for one invoice line.

        UBL only carries the tax-exclusive unit price; the inclusive price and
        both totals are derived from it.
        """
        tax_percent = _decimal(
            _first(
                _text(line, "Item", "ClassifiedTaxCategory", "Percent"),
                _text(line, "Percent", descendant=True),
            ),
            "Percent",
        )
        quantity = _decimal(_text(line, "InvoicedQuantity"), "InvoicedQuantity")
        unit_price_excl = _decimal(_text(line, "Price", "PriceAmount"), "PriceAmount")
        try:
            unit_price_incl = unit_price_excl * (1 + tax_percent / 100)
            total_excl = quantity * unit_price_excl
            total_incl = quantity * unit_price_incl
        except ArithmeticError as e:
            raise UBLParseError(
                f"Invalid UBL document: amounts of line {index} are out of range"
            ) from e

        price = _find(line, "Price", "PriceAmount")
        extension = _find(line, "LineExtensionAmount")
        currency = _first(
            price.get("currencyID") if price is not None else None,
            extension.get("currencyID") if extension is not None else None,
            document_currency,
            self.settings.default_currency,
        )

        return add_line_item(
            id=_text(line, "ID") or str(index),
            description=_first(
                _text(line, "Item", "Description"),
                _text(line, "Item", "Name"),
                "No description",
            ),
            tax_percent=tax_percent,
            quantity=quantity,
            currency=currency,
            unit_price_tax_excl=unit_price_excl,
            unit_price_tax_incl=unit_price_incl,
            total_price_tax_excl=total_excl,
            total_price_tax_incl=total_incl,
        )


def load_ubl(
    document: InvoiceDocument, xml: str | bytes, settings: Settings | None = None
) -> InvoiceState:
    """Import a UBL document into ``document`` and return its new state."""
    return UBLImporter(settings or document.settings).load(document, xml)
