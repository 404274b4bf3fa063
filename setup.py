"""
Setup script for the PoseTracking library.
"""

from setuptools import setup, find_packages
import os


def read_readme():
    """Read README file for long description."""
    if os.path.exists('README.md'):
        with open('README.md', 'r', encoding='utf-8') as f:
            return f.read()
    return "Robust object pose estimation and tracking"


# Core requirements (always installed)
install_requires = [
    'numpy>=1.19.0',
    'opencv-python>=4.5.0',
    'scipy>=1.6.0',
]

# Optional dependencies for different use cases
extras_require = {
    'open3d': [
        'open3d>=0.15.0',
    ],
    'dev': [
        'pytest>=6.0.0',
        'pytest-cov>=2.12.0',
    ],
    'all': [
        'open3d>=0.15.0',
        'pytest>=6.0.0',
        'pytest-cov>=2.12.0',
    ]
}

setup(
    name="pose-tracking",
    version="0.1.0",
    description="RANSAC PnP with depth, LK pose tracking and multi-hypothesis ICP",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["PoseTracking", "PoseTracking.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Image Processing",
    ],
    python_requires=">=3.8",
    install_requires=install_requires,
    extras_require=extras_require,
    keywords=[
        "computer vision",
        "pose estimation",
        "RANSAC",
        "PnP",
        "ICP",
        "optical flow",
        "tracking",
        "opencv"
    ],
)
