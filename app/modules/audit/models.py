# Supabase table: audit_log
# RPC: get_audit_log_paginated

"""
Expected Supabase table structure:

audit_log:
- id: uuid (primary key)
- institution_id: uuid (nullable)
- actor_user_id: uuid (nullable for webhook-originated rows)
- actor_email: text (nullable)
- action: text - e.g. create_member, allocate_transaction, send_whatsapp, receive_whatsapp
- entity_type: text - member | group | transaction | loan | whatsapp_message | profile | ...
- entity_id: text (nullable)
- request_id: text (nullable)
- ip_address / user_agent: text (nullable)
- metadata: jsonb (includes previous_value / new_value when relevant)
- created_at: timestamp (default: now())

get_audit_log_paginated(p_institution_id, p_limit, p_cursor, p_action_filter,
                        p_entity_type_filter, p_actor_filter, p_date_from, p_date_to)
  -> {success, items, has_more, next_cursor}
"""
