from __future__ import annotations

import warnings

import numba
from numba import cuda
from numba.core.errors import NumbaPerformanceWarning

from dicimage.config import GRAD_HALO, MAX_GAUSS_HALF_MASK, MAX_GAUSS_MASK_SIZE, MAX_TEAM_SIZE

# Small images launch grids far below device occupancy.
warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)

GRAD_ROW_TILE_SIZE = MAX_TEAM_SIZE + 2 * GRAD_HALO
GAUSS_ROW_TILE_SIZE = MAX_TEAM_SIZE + 2 * MAX_GAUSS_HALF_MASK
GAUSS_MASK_TILE_SIZE = MAX_GAUSS_MASK_SIZE * MAX_GAUSS_MASK_SIZE


@cuda.jit(device=True, inline=True, cache=True)
def clamp(i: int, n: int) -> int:
    if i < 0:
        return 0
    if i > n - 1:
        return n - 1
    return i


@cuda.jit(device=True, inline=True, cache=True)
def is_interior(x: int, y: int, w: int, h: int) -> bool:
    return x >= GRAD_HALO and x < w - GRAD_HALO and y >= GRAD_HALO and y < h - GRAD_HALO


@cuda.jit(device=True, inline=True, cache=True)
def central_difference(m2, m1, c, p1, p2, pos, n, interior, c1, c2):
    # m2..p2 are samples at pos-2..pos+2 (clamped), only in-bounds ones are used
    if interior:
        return c1 * (m2 - p2) + c2 * (p1 - m1)
    if n == 1:
        return 0.0
    if pos == 0:
        return p1 - c
    if pos == n - 1:
        return c - m1
    return 0.5 * (p1 - m1)


@cuda.jit(cache=True)
def grad_flat_kernel(img, gx_out, gy_out, c1, c2):
    idx = cuda.grid(1)
    h, w = img.shape
    if idx >= h * w:
        return
    y = idx // w
    x = idx - y * w

    interior = is_interior(x, y, w, h)

    gx_out[y, x] = central_difference(
        img[y, clamp(x - 2, w)],
        img[y, clamp(x - 1, w)],
        img[y, x],
        img[y, clamp(x + 1, w)],
        img[y, clamp(x + 2, w)],
        x,
        w,
        interior,
        c1,
        c2,
    )
    gy_out[y, x] = central_difference(
        img[clamp(y - 2, h), x],
        img[clamp(y - 1, h), x],
        img[y, x],
        img[clamp(y + 1, h), x],
        img[clamp(y + 2, h), x],
        y,
        h,
        interior,
        c1,
        c2,
    )


@cuda.jit(cache=True)
def grad_team_kernel(img, gx_out, gy_out, c1, c2):
    row = cuda.shared.array(shape=GRAD_ROW_TILE_SIZE, dtype=numba.float64)

    tx = cuda.threadIdx.x
    bs = cuda.blockDim.x
    y = cuda.blockIdx.y
    h, w = img.shape

    # team covers columns [base_x + GRAD_HALO, base_x + GRAD_HALO + bs) of row y
    base_x = cuda.blockIdx.x * bs - GRAD_HALO
    tile_w = bs + 2 * GRAD_HALO
    for i in range(tx, tile_w, bs):
        row[i] = img[y, clamp(base_x + i, w)]
    cuda.syncthreads()

    x = cuda.blockIdx.x * bs + tx
    if x >= w:
        return

    interior = is_interior(x, y, w, h)
    lt = tx + GRAD_HALO

    gx_out[y, x] = central_difference(
        row[lt - 2],
        row[lt - 1],
        row[lt],
        row[lt + 1],
        row[lt + 2],
        x,
        w,
        interior,
        c1,
        c2,
    )
    gy_out[y, x] = central_difference(
        img[clamp(y - 2, h), x],
        img[clamp(y - 1, h), x],
        row[lt],
        img[clamp(y + 1, h), x],
        img[clamp(y + 2, h), x],
        y,
        h,
        interior,
        c1,
        c2,
    )


@cuda.jit(cache=True)
def gauss_flat_kernel(src, dst, mask, half_mask):
    idx = cuda.grid(1)
    h, w = src.shape
    if idx >= h * w:
        return
    y = idx // w
    x = idx - y * w

    mask_size = 2 * half_mask + 1
    acc = 0.0
    wsum = 0.0
    for j in range(mask_size):
        yy = y - half_mask + j
        if yy < 0 or yy >= h:
            continue
        for i in range(mask_size):
            xx = x - half_mask + i
            if xx < 0 or xx >= w:
                continue
            wt = mask[j, i]
            acc += wt * src[yy, xx]
            wsum += wt

    dst[y, x] = acc / wsum


@cuda.jit(cache=True)
def gauss_team_kernel(src, dst, mask, half_mask):
    row = cuda.shared.array(shape=GAUSS_ROW_TILE_SIZE, dtype=numba.float64)
    m_sh = cuda.shared.array(shape=GAUSS_MASK_TILE_SIZE, dtype=numba.float64)

    tx = cuda.threadIdx.x
    bs = cuda.blockDim.x
    y = cuda.blockIdx.y
    h, w = src.shape
    mask_size = 2 * half_mask + 1

    for i in range(tx, mask_size * mask_size, bs):
        m_sh[i] = mask[i // mask_size, i % mask_size]

    base_x = cuda.blockIdx.x * bs - half_mask
    tile_w = bs + 2 * half_mask
    x = cuda.blockIdx.x * bs + tx

    acc = 0.0
    wsum = 0.0
    for j in range(mask_size):
        yy = y - half_mask + j
        row_valid = yy >= 0 and yy < h

        # previous row fully consumed (and mask loaded) before overwrite
        cuda.syncthreads()
        if row_valid:
            for i in range(tx, tile_w, bs):
                lx = base_x + i
                if lx >= 0 and lx < w:
                    row[i] = src[yy, lx]
                else:
                    row[i] = 0.0
        cuda.syncthreads()

        if row_valid and x < w:
            for i in range(mask_size):
                xx = x - half_mask + i
                if xx < 0 or xx >= w:
                    continue
                wt = m_sh[j * mask_size + i]
                acc += wt * row[tx + i]
                wsum += wt

    if x < w:
        dst[y, x] = acc / wsum

