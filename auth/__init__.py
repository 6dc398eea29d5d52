"""
auth — User authentication for the booking back office.

Provides:
  • Signed bearer token creation & verification
  • Password hashing (bcrypt)
  • Register / Login / Me API routes
  • ``get_current_user_id`` and ``require_admin`` FastAPI dependencies
"""
