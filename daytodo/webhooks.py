"""User provisioning webhook.

An external identity provider posts `{"type": ..., "data": {...}}` events
here. Only `user.created` changes state; other event types are acknowledged
so the provider does not retry them.
"""
from typing import Any, Dict, Optional
import logging
import secrets

from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from . import config
from .db import async_session
from .models import User

router = APIRouter(prefix='/webhooks')
logger = logging.getLogger(__name__)


class WebhookEvent(BaseModel):
    type: Optional[str] = None
    data: Dict[str, Any] = {}


def _primary_email(data: dict) -> str:
    addresses = data.get('email_addresses') or []
    if addresses and isinstance(addresses[0], dict):
        return addresses[0].get('email_address') or ''
    return ''


@router.post('/users')
async def provision_user(event: WebhookEvent, x_webhook_secret: Optional[str] = Header(default=None)):
    if config.WEBHOOK_SECRET:
        if not x_webhook_secret or not secrets.compare_digest(x_webhook_secret, config.WEBHOOK_SECRET):
            raise HTTPException(status_code=401, detail='invalid webhook secret')
    if not event.type:
        raise HTTPException(status_code=400, detail='Invalid payload')
    if event.type != 'user.created':
        return JSONResponse({'ok': True, 'handled': False, 'detail': 'Webhook event not handled'})

    data = event.data or {}
    external_id = data.get('id')
    if not external_id:
        raise HTTPException(status_code=400, detail='Invalid payload')
    email = _primary_email(data)
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.external_id == str(external_id)))
        existing = q.first()
        if existing:
            return JSONResponse({'ok': True, 'handled': True, 'id': existing.id}, status_code=200)
        user = User(
            username=email or str(external_id),
            external_id=str(external_id),
            email=email,
            first_name=data.get('first_name') or '',
            last_name=data.get('last_name') or '',
            avatar=data.get('image_url') or None,
        )
        sess.add(user)
        try:
            await sess.commit()
        except IntegrityError:
            await sess.rollback()
            logger.exception('Error inserting user external_id=%s', external_id)
            raise HTTPException(status_code=500, detail='Error inserting user')
        await sess.refresh(user)
    logger.info('provisioned user id=%s external_id=%s', user.id, external_id)
    return JSONResponse({'ok': True, 'handled': True, 'id': user.id}, status_code=201)
