"""RentBot: WhatsApp rental-listing marketplace."""
