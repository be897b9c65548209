"""Prompt templates for the extraction, categorization and re-validation agents.

Every template is rendered with ``str.format``; literal JSON braces are doubled.
"""

STATEMENT_FIELDS = """  "schemaVersion": "v1",
  "bankInfo": {{
    "bankName": "name",
    "accountNumber": "last 4 digits",
    "accountType": "checking|savings|credit card",
    "statementPeriod": "YYYY-MM-DD to YYYY-MM-DD"
  }},
  "transactionCount": number,
  "transactions": [
    {{
      "date": "YYYY-MM-DD",
      "description": "brief description (max 60 chars)",
      "amount": number,
      "type": "debit|credit"
    }}
  ],
  "summary": {{
    "beginningBalance": number,
    "endingBalance": number,
    "transactionCount": number
  }}"""

STATEMENT_SHAPE = "{{\n" + STATEMENT_FIELDS + "\n}}"

AMOUNT_RULES = """Amount rules:
- Use a NEGATIVE amount for money leaving the account (debits, withdrawals, fees, purchases).
- Use a POSITIVE amount for money entering the account (credits, deposits, refunds).
- "Beginning Balance", "Ending Balance", "Previous Balance" and "New Balance" lines are NOT transactions.
- Do not invent transactions; do not skip any line item."""

PAGE_EXTRACTION_PROMPT = (
    "You are reading page {page} of {total_pages} of a bank statement.\n"
    "First estimate how many transaction line items appear on this page, then list every one of them.\n"
    "Bank statements typically list 10-30 line items per page.\n\n"
    f"{AMOUNT_RULES}\n\n"
    "Return JSON with exactly this shape (bankInfo and summary only if visible on this page):\n"
    f"{STATEMENT_SHAPE}\n\n"
    "Respond with raw JSON only."
)

TEXT_EXTRACTION_PROMPT = (
    "Extract every transaction from this bank statement text.\n\n"
    f"{AMOUNT_RULES}\n\n"
    f"Return JSON with exactly this shape:\n{STATEMENT_SHAPE}\n\n"
    "Respond with raw JSON only.\n\nSTATEMENT TEXT:\n{text}"
)

PDF_EXTRACTION_PROMPT = (
    "Extract key transaction data from this bank statement. Be concise.\n\n"
    f"{AMOUNT_RULES}\n\n"
    f"Return JSON with exactly this shape:\n{STATEMENT_SHAPE}\n\n"
    "Keep descriptions brief. Respond with raw JSON only."
)

CSV_EXTRACTION_PROMPT = (
    "Analyze this bank statement CSV data and extract structured information.\n\n"
    f"{AMOUNT_RULES}\n\n"
    "Return JSON with the shape below, including the detected column mapping:\n"
    "{{\n"
    f"{STATEMENT_FIELDS},\n"
    '  "columnMapping": {{"date": "column name", "description": "column name", '
    '"amount": "column name", "balance": "column name if exists"}}\n'
    "}}\n\n"
    "Respond with raw JSON only.\n\nCSV DATA:\n{text}"
)

CATEGORIES = (
    "Office Supplies, Software & SaaS, Marketing & Advertising, Professional Services, Legal & Accounting, "
    "Business Insurance, Equipment, Business Travel, Client Entertainment, Contractor Payments, Payroll, "
    "Business Utilities, Rent & Lease, Shipping & Logistics, Telecommunications, Website & Hosting, Bank Fees, "
    "Groceries, Dining & Restaurants, Entertainment, Personal Shopping, Healthcare, Home Utilities, "
    "Rent/Mortgage, Personal Insurance, Personal Care, Fitness & Wellness, Personal Travel, Gifts, "
    "Subscriptions, Phone & Internet, Transportation, Gas & Fuel, Education, Childcare, "
    "Salary, Freelance Income, Business Revenue, Investment Income, Dividends, Interest, Refunds, "
    "Credit Card Payment, Loan Payment, Transfers, Taxes, Other"
)

CATEGORIZATION_PROMPT = (
    "Categorize these {count} financial transactions. For each, provide category, confidence, merchant, "
    "whether it is recurring, AND whether it is a BUSINESS or PERSONAL transaction.\n\n"
    "{transactions}\n\n"
    f"Categories: {CATEGORIES}\n\n"
    "Profile classification:\n"
    "- BUSINESS: office supplies, business services, professional fees, business travel, client meals, "
    "equipment, software licenses, advertising, customer payments, payouts.\n"
    "- PERSONAL: personal groceries, dining, entertainment, healthcare, household bills, personal shopping.\n"
    "{context}\n"
    "CRITICAL: the input has exactly {count} transactions numbered 1 to {count}. "
    "Your categorizedTransactions array MUST contain exactly {count} items, one per input, "
    'each carrying the input number in "index".\n\n'
    "Return JSON:\n"
    "{{\n"
    '  "schemaVersion": "v1",\n'
    '  "categorizedTransactions": [\n'
    "    {{\n"
    '      "index": 1,\n'
    '      "description": "input description",\n'
    '      "suggestedCategory": "category",\n'
    '      "confidence": 0.95,\n'
    '      "reasoning": "brief",\n'
    '      "merchant": "merchant name",\n'
    '      "isRecurring": false,\n'
    '      "profileType": "BUSINESS or PERSONAL"\n'
    "    }}\n"
    "  ]\n"
    "}}\n\n"
    "Raw JSON only."
)

CONTEXT_TEMPLATE = (
    "\nCONTEXT: This is a {business_type} in the {industry} industry.{company}\n"
    "Use this context to make more accurate BUSINESS vs PERSONAL classifications.\n"
)

VALIDATION_PROMPT = (
    "You are a financial auditor. Re-validate these categorized transactions and flag any potential errors:\n\n"
    "{transactions}\n\n"
    "For each transaction, verify:\n"
    "1. Category is appropriate for the description/merchant\n"
    "2. Profile type (BUSINESS vs PERSONAL) is correct\n"
    "3. Amount and type (INCOME/EXPENSE/TRANSFER) make sense\n\n"
    "Return JSON:\n"
    "{{\n"
    '  "schemaVersion": "v1",\n'
    '  "validatedTransactions": [\n'
    "    {{\n"
    '      "transactionId": "id",\n'
    '      "originalCategory": "category",\n'
    '      "validatedCategory": "category (same or corrected)",\n'
    '      "originalProfile": "BUSINESS|PERSONAL",\n'
    '      "validatedProfile": "BUSINESS|PERSONAL (same or corrected)",\n'
    '      "confidence": 0.95,\n'
    '      "hasIssue": false,\n'
    '      "issueType": null,\n'
    '      "issueSeverity": null,\n'
    '      "issueDescription": null,\n'
    '      "suggestedFix": null\n'
    "    }}\n"
    "  ]\n"
    "}}\n\n"
    "issueType is one of LOW_CONFIDENCE, CATEGORY_MISMATCH, PROFILE_MISMATCH; issueSeverity one of LOW, MEDIUM, "
    "HIGH. Respond with raw JSON only."
)
