"""
Document lifecycle

Draft -> Under review -> Approved | Rejected, then Archived.
Uploading a new version puts the document back into Draft; a daily job does the
same for approved documents whose review date has passed.
"""
