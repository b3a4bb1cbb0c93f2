"""OTP retrieval - polls a mailbox for the Axiom login security code."""

from axiomtrade.otp.extract import extract_otp_from_body, extract_otp_from_subject
from axiomtrade.otp.fetcher import OtpFetcher

__all__ = ["OtpFetcher", "extract_otp_from_body", "extract_otp_from_subject"]
