# System label ids the Gmail binding relies on.

INBOX_LABEL = "INBOX"
# Messages carrying this label are unread; mark-read removes it.
UNREAD_LABEL = "UNREAD"
TRASH_LABEL = "TRASH"
