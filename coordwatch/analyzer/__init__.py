"""coordwatch analyzer — windowed coordination scoring and alerting.

Modules
───────
  detector       — coordinated_repost / bot_rate / sock_puppet: snapshot → candidates
  scorer         — run detectors in parallel with soft timeouts
  alert_machine  — candidates → alerts (Pending / Active / Resolved)
  metrics        — rejection and health counters
  engine         — ingestion path + evaluation path + read-only queries
  scheduler      — background tick thread for live streams
  pipeline       — JSONL loading and event-time replay
"""
