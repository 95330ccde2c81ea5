"""
app/routers — FastAPI Routers Module
======================================

Purpose:
  One router per API area, all mounted under /api by app.main.create_app().

Routers:
  - track:          page views, interactions, sessions
  - fingerprint:    visitor identification, transparency info, statistics
  - profile:        visitor profiles, tags, aggregate metrics
  - analytics:      content events and views, summary, e-mailed reports
  - congratulation: congratulation cards
  - forms:          form builder and submissions
  - contact:        contact form e-mail
  - revalidate:     in-process cache reset
"""
