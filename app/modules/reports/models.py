# Supabase table: group_reports

"""
Expected Supabase table structure:

group_reports:
- id: uuid (primary key)
- institution_id: uuid
- group_id: uuid (foreign key to groups.id)
- report_type: text - WEEKLY | MONTHLY | OVERALL
- period_start / period_end: date (nullable; OVERALL has no bounds)
- summary: jsonb - total_contributions, overall_total, member_count
- member_contributions: jsonb - [{member_id, member_name, phone, period_total, overall_total}]
- pdf_url: text (nullable)
- generated_by: uuid (nullable)
- created_at: timestamp

RPCs:
- get_group_contributions_summary(p_group_id, p_period_start, p_period_end)
  -> {period_total, overall_total, member_count, member_contributions}
- get_group_leaders(p_group_id) -> [{member_id, full_name, phone, role}]
"""
