"""
Consulta pública de laudos.
NO requiere autenticación: se accede con el ID del laudo y su código de acceso.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.core.crypto import FieldCipher, get_cipher
from laudofy.database import get_db
from laudofy.schemas.medical_report import PublicAccessRequest, PublicReportView
from laudofy.services import medical_report_service

router = APIRouter()


@router.post("/{report_id}", response_model=PublicReportView)
async def view_public_report(
    report_id: UUID,
    data: PublicAccessRequest,
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """
    Vista reducida del laudo para el paciente. El código va en el body
    para que no quede en logs de acceso.
    """
    return await medical_report_service.get_public_view(db, cipher, report_id, data.access_code)
