#!/usr/bin/env python3
"""Test email sender for the inbound SMTP server.

Builds a message (optionally with an HTML part and attachments) and
either prints it or delivers it to a running SMTP server.

Usage:
    # Create an address first
    curl -X POST localhost:8000/api/temp-email/generate -H 'Content-Type: application/json' -d '{}'

    # Print the message to stdout
    python scripts/send_test_email.py --to abc123defg@tempmail.local

    # Deliver it to the local SMTP server
    python scripts/send_test_email.py --to abc123defg@tempmail.local \
        --subject "Hi" --body "Hello world" --send --smtp-port 2525

    # With attachments (repeatable) and an HTML alternative
    python scripts/send_test_email.py --to abc123defg@tempmail.local \
        --attachment invoice.pdf --generate-csv items.csv --html "<p>Hello</p>" --send
"""

import argparse
import mimetypes
import os
import smtplib
import sys
from email.message import EmailMessage
from pathlib import Path
from typing import List, Optional


def generate_sample_csv() -> bytes:
    """Small CSV payload for attachment tests."""
    csv_content = """sku,description,quantity
A-001,Widget A,100
B-002,Widget B,50
"""
    return csv_content.encode('utf-8')


def create_email(
    from_email: str,
    to_email: str,
    subject: str,
    body: str,
    html: Optional[str] = None,
    attachments: Optional[List[str]] = None,
    sample_csv: Optional[str] = None,
) -> EmailMessage:
    """Create the MIME message.

    Args:
        from_email: Sender email address
        to_email: Recipient (a temporary address)
        subject: Email subject
        body: Plain text body
        html: Optional HTML alternative
        attachments: Paths of files to attach
        sample_csv: Filename for a generated CSV attachment
    """
    msg = EmailMessage()
    msg['From'] = from_email
    msg['To'] = to_email
    msg['Subject'] = subject
    msg['Message-ID'] = f"<test-{os.urandom(8).hex()}@tempmail-test>"
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype='html')

    for filepath in attachments or []:
        path = Path(filepath)
        if not path.exists():
            print(f"WARNING: Attachment not found: {filepath}", file=sys.stderr)
            continue

        mime_type, _ = mimetypes.guess_type(filepath)
        maintype, subtype = (mime_type or 'application/octet-stream').split('/', 1)
        content = path.read_bytes()
        msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=path.name)
        print(f"Attached: {path.name} ({len(content)} bytes)", file=sys.stderr)

    if sample_csv:
        content = generate_sample_csv()
        msg.add_attachment(content, maintype='text', subtype='csv', filename=sample_csv)
        print(f"Generated and attached: {sample_csv} ({len(content)} bytes)", file=sys.stderr)

    return msg


def send_email(msg: EmailMessage, smtp_host: str = 'localhost', smtp_port: int = 2525) -> None:
    """Deliver the message with a plain (no TLS, no AUTH) SMTP session."""
    try:
        with smtplib.SMTP(smtp_host, smtp_port) as smtp:
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        print(f"ERROR sending email: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Email sent to {msg['To']} via {smtp_host}:{smtp_port}", file=sys.stderr)


def main():
    parser = argparse.ArgumentParser(
        description='Send test emails to the temporary mail SMTP server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--to', dest='to_email', required=True, help='Temporary address to deliver to')
    parser.add_argument('--from', dest='from_email', default='sender@example.com', help='Sender address')
    parser.add_argument('--subject', default='Test message', help='Email subject')
    parser.add_argument('--body', default='This is a test message.', help='Plain text body')
    parser.add_argument('--html', help='Optional HTML body')
    parser.add_argument('--attachment', action='append', help='File to attach (repeatable)')
    parser.add_argument('--generate-csv', metavar='FILENAME', help='Attach a generated sample CSV')
    parser.add_argument('--send', action='store_true', help='Send via SMTP (otherwise print to stdout)')
    parser.add_argument('--smtp-host', default='localhost', help='SMTP server host (default: localhost)')
    parser.add_argument('--smtp-port', type=int, default=2525, help='SMTP server port (default: 2525)')

    args = parser.parse_args()

    msg = create_email(
        from_email=args.from_email,
        to_email=args.to_email,
        subject=args.subject,
        body=args.body,
        html=args.html,
        attachments=args.attachment,
        sample_csv=args.generate_csv,
    )

    if args.send:
        send_email(msg, smtp_host=args.smtp_host, smtp_port=args.smtp_port)
    else:
        print(msg.as_string())


if __name__ == '__main__':
    main()
