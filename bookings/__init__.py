"""
bookings — hooks the booking workflow calls to mirror bookings into the
owner's connected calendar.
"""
