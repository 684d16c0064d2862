"""Grading routes - request grading, fetch results, human review."""

from fastapi import APIRouter, Depends, HTTPException
from typing import List

from app.config import logger
from app.deps import get_front_door, get_grading_service
from app.errors import GradingFailedError, GradingInProgressError, ResourceNotFoundError
from app.models.grading import GradingEnqueuedResponse, GradingResult, GradingReviewRequest

router = APIRouter(tags=["grading"])


@router.post("/submissions/{submission_id}/grade", status_code=202, response_model=GradingEnqueuedResponse)
async def enqueue_grading(submission_id: str, front_door=Depends(get_front_door)):
    """Queue (or run) AI grading for a submission"""
    try:
        return await front_door.enqueue_grading(submission_id)
    except ResourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GradingInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except GradingFailedError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to start grading for {submission_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to start grading: {str(e)}")


@router.get("/submissions/{submission_id}/grade", response_model=GradingResult)
async def get_grading_result(submission_id: str, service=Depends(get_grading_service)):
    """Get the grading result for a submission"""
    try:
        return await service.get_result(submission_id)
    except ResourceNotFoundError:
        raise HTTPException(status_code=404, detail="Grading result not found")


@router.get("/grading/reviews/pending", response_model=List[GradingResult])
async def get_pending_reviews(service=Depends(get_grading_service)):
    """Results flagged for review that no teacher has looked at yet"""
    return await service.get_pending_reviews()


@router.patch("/grading/{grade_id}/review", response_model=GradingResult)
async def review_grade(grade_id: str, review: GradingReviewRequest, service=Depends(get_grading_service)):
    try:
        return await service.review_grade(
            grade_id,
            final_score=review.final_score,
            teacher_override=review.teacher_override,
            question_scores=review.question_scores,
            reviewed_by=review.reviewed_by,
        )
    except ResourceNotFoundError:
        raise HTTPException(status_code=404, detail="Grading result not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
