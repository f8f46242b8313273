# Supabase table: sms_messages

"""
Expected Supabase table structure:

sms_messages:
- id: uuid (primary key)
- institution_id: uuid (not null)
- sender: text
- body: text
- source: text - MTN | AIRTEL | BANK
- timestamp: timestamp - when the phone received the SMS
- is_parsed: boolean
- parsed_amount: numeric (nullable)
- parsed_currency: text (nullable)
- parsed_transaction_id: text (nullable) - provider reference extracted from the body
- parsed_counterparty: text (nullable)
- linked_transaction_id: uuid (nullable, foreign key to transactions.id)
- created_at: timestamp
"""
