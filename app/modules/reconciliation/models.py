# Supabase table: reconciliation_issues

"""
Expected Supabase table structure:

reconciliation_issues:
- id: uuid (primary key)
- institution_id: uuid (not null)
- source: text - MOMO | BANK | CASH | SMS
- amount: numeric
- source_reference: text (nullable)
- ledger_status: text - what the ledger shows for the payment
- status: text - OPEN | RESOLVED | IGNORED
- notes: text (nullable)
- linked_transaction_id: uuid (nullable, foreign key to transactions.id)
- detected_at: timestamp
- resolved_at: timestamp (nullable)
"""
