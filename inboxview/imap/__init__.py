"""IMAP access: authentication, pooled sessions and mailbox queries."""
