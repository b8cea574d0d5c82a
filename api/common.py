"""Shared request models and error translation for the API routers."""
import logging

from fastapi import HTTPException, Request, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from errors import AssetLinkError

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    """Request body accepting camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def http_error(e: AssetLinkError) -> HTTPException:
    """Translate a domain error to an HTTPException with its status code."""
    return HTTPException(
        status_code=e.status_code,
        detail={
            'error': type(e).__name__,
            'message': e.message,
            'details': e.details,
        }
    )


def internal_error(e: Exception, action: str) -> HTTPException:
    logger.error(f"Unexpected error while trying to {action}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


def get_engine(request: Request):
    return request.app.state.engine


def get_custody(request: Request):
    return request.app.state.custody


def get_marketplace(request: Request):
    return request.app.state.marketplace


def get_gateway(request: Request):
    return request.app.state.gateway
