"""
Paperclip

File attachments with derived image variants for Django models.
"""
