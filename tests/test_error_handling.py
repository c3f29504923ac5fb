"""Tests for the error hierarchy and ErrorHandler"""
import logging

import pytest

from netscope.error_handling import (
    ErrorContext, ErrorHandler, HostDataUnavailable, MalformedReference, NetScopeError,
)


@pytest.fixture
def handler(caplog):
    caplog.set_level(logging.DEBUG, logger=ErrorHandler.LOGGER_NAME)
    return ErrorHandler()


def test_recoverable_error_logged_on_one_line(handler, caplog):
    handler.handle_error(MalformedReference("edge without address", context=ErrorContext(address=0x10)))
    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.getMessage() == "Reference Error at 0x10: edge without address"


def test_fatal_error_logged_with_full_context(handler, caplog):
    error = HostDataUnavailable("no procedures", context=ErrorContext(binary_path='a.exe'))
    assert not error.recoverable
    handler.handle_error(error)
    record = caplog.records[-1]
    assert record.levelno == logging.CRITICAL
    assert 'Binary: a.exe' in record.getMessage()
    assert 'Suggestion:' in record.getMessage()


def test_foreign_exception_is_wrapped(handler, caplog):
    handler.handle_error(AttributeError("'str' object has no attribute 'get'"))
    message = caplog.records[-1].getMessage()
    assert 'Internal Error' in message
    assert 'AttributeError' in message


def test_reraise(handler):
    with pytest.raises(ValueError):
        handler.handle_error(ValueError("boom"), reraise=True)


def test_recoverable_flags():
    assert MalformedReference("x").recoverable
    assert not NetScopeError("x").recoverable
