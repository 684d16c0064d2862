"""Teacher settings routes - confidence threshold for review flagging."""

from fastapi import APIRouter, Depends, HTTPException

from app.deps import get_threshold_resolver
from app.errors import ResourceNotFoundError
from app.models.user import TeacherThresholdResponse, TeacherThresholdUpdate

router = APIRouter(tags=["settings"])


@router.get("/teachers/{teacher_id}/settings/confidence-threshold", response_model=TeacherThresholdResponse)
async def get_confidence_threshold(teacher_id: str, resolver=Depends(get_threshold_resolver)):
    try:
        return await resolver.get_teacher_threshold(teacher_id)
    except ResourceNotFoundError:
        raise HTTPException(status_code=404, detail="Teacher not found")


@router.put("/teachers/{teacher_id}/settings/confidence-threshold", response_model=TeacherThresholdResponse)
async def update_confidence_threshold(
    teacher_id: str,
    update: TeacherThresholdUpdate,
    resolver=Depends(get_threshold_resolver)
):
    """Set or clear (null) the teacher's own threshold"""
    try:
        return await resolver.update_teacher_threshold(teacher_id, update.confidence_threshold)
    except ResourceNotFoundError:
        raise HTTPException(status_code=404, detail="Teacher not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
