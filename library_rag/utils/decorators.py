"""
Utility decorators for the library RAG pipeline.

Provides timing and error-wrapping decorators that work for both plain
functions and coroutine functions.
"""

import time
import inspect
import functools
from typing import Callable, Type

from library_rag.utils.logging import get_logger
from library_rag.utils.exceptions import RAGException


def timing_decorator(func: Callable) -> Callable:
    """
    Decorator to measure function execution time.

    Args:
        func: Function or coroutine function to be timed

    Returns:
        Wrapped function with timing
    """
    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
                execution_time = time.perf_counter() - start_time
                logger.info(f"⏱️ {func.__name__} executed in {execution_time:.3f}s")
                return result
            except Exception as e:
                execution_time = time.perf_counter() - start_time
                logger.error(f"❌ {func.__name__} failed after {execution_time:.3f}s: {str(e)}")
                raise

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        start_time = time.perf_counter()

        try:
            result = func(*args, **kwargs)
            execution_time = time.perf_counter() - start_time
            logger.info(f"⏱️ {func.__name__} executed in {execution_time:.3f}s")
            return result
        except Exception as e:
            execution_time = time.perf_counter() - start_time
            logger.error(f"❌ {func.__name__} failed after {execution_time:.3f}s: {str(e)}")
            raise

    return wrapper


def error_handler_decorator(exception_type: Type[RAGException] = RAGException):
    """
    Decorator that re-raises unexpected errors of a coroutine as a typed error.

    RAG exceptions pass through untouched.

    Args:
        exception_type: Type of exception to raise for unexpected errors

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except RAGException as e:
                logger = get_logger(func.__module__)
                logger.error(f"❌ {func.__name__} failed: {str(e)}")
                raise
            except Exception as e:
                logger = get_logger(func.__module__)
                logger.error(f"❌ Unexpected error in {func.__name__}: {str(e)}")
                raise exception_type(f"Unexpected error in {func.__name__}: {str(e)}") from e

        return wrapper
    return decorator
