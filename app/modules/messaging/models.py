# Supabase tables: whatsapp_message_log, whatsapp_inbound_log, institution_settings

"""
Expected Supabase table structure:

whatsapp_message_log:
- id: uuid (primary key)
- institution_id: uuid
- direction: text - outbound
- phone_number: text (E.164)
- message_type: text - text | document
- content: text (nullable)
- status: text - pending | sent | failed | delivered | read
- message_id: text (nullable) - id returned by the Graph API
- error_message: text (nullable)
- idempotency_key: text (nullable, unique per institution)
- request_id: text
- metadata: jsonb - document_url, document_filename, sent_by
- created_at / updated_at: timestamp

whatsapp_inbound_log:
- id: uuid (primary key)
- institution_id: uuid (nullable when the phone id is unknown)
- from_phone: text
- message_id: text
- message_type: text
- content: text (nullable)
- raw_payload: jsonb
- processed: boolean
- webhook_received_at: timestamp

institution_settings:
- institution_id: uuid
- whatsapp_phone_id: text (nullable)
"""
