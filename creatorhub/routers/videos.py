from fastapi import APIRouter, Depends

from ..auth import get_current_user
from ..config import Settings, get_settings
from ..models import User
from ..schemas import VideoOtpRequest
from ..services.video import request_playback_otp

router = APIRouter()


@router.post('/otp')
async def playback_otp(
    payload: VideoOtpRequest,
    _user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    return await request_playback_otp(payload.videoId or "", settings)
