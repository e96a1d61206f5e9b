import math
import statistics

import numpy as np
import pandas as pd
import psutil
from scipy.spatial.distance import squareform
from scipy.cluster.hierarchy import linkage, cut_tree, dendrogram
from scipy.stats import t
from statsmodels.formula.api import ols
from matplotlib import colors as mcolors
from sklearn.cluster import KMeans
from sklearn.impute import KNNImputer
from sklearn.preprocessing import scale

# remove runtime warning (divided by zero)
np.seterr(divide='ignore', invalid='ignore')

# public values
networkTypes = ["unsigned", "signed", "signed hybrid"]
adjacencyTypes = ["unsigned", "signed", "signed hybrid"]
TOMTypes = ["NA", "unsigned", "signed"]
TOMDenoms = ["min", "mean"]

# module colors in the order WGCNA hands them out
standardColors = ["turquoise", "blue", "brown", "yellow", "green", "red", "black", "pink", "magenta",
                  "purple", "greenyellow", "tan", "salmon", "cyan", "midnightblue", "lightcyan", "grey60",
                  "lightgreen", "lightyellow", "royalblue", "darkred", "darkgreen", "darkturquoise", "darkgrey",
                  "orange", "darkorange", "white", "skyblue", "saddlebrown", "steelblue", "paleturquoise",
                  "violet", "darkolivegreen", "darkmagenta"]
# WGCNA color names matplotlib does not know
drawColors = {"grey60": "#999999"}

# bcolors
OKCYAN = '\033[96m'
OKGREEN = '\033[92m'
WARNING = '\033[93m'
ENDC = '\033[0m'


class Network:
    """
    Weighted correlation network routines used to find co-expression modules.
    Expression data is always given as samples x genes.
    """

    # Check that all genes and samples have sufficiently low numbers of missing values.
    @staticmethod
    def goodSamplesGenes(datExpr, minFraction=1 / 2, minNSamples=4, minNGenes=4, tol=None):
        """
        Iteratively flag genes and samples with too many missing values or zero variance

        :param datExpr: expression data, samples in rows and genes in columns
        :type datExpr: pandas dataframe
        :param minFraction: minimum fraction of non-missing samples for a gene to be considered good (default: 1/2)
        :type minFraction: float
        :param minNSamples: minimum number of non-missing samples for a gene to be considered good (default: 4)
        :type minNSamples: int
        :param minNGenes: minimum number of good genes for the data set to be considered fit for analysis (default: 4)
        :type minNGenes: int
        :param tol: numerical tolerance for the variance (default: 1e-10 * max(abs(datExpr)))
        :type tol: float

        :return: good genes, good samples and whether everything was OK
        :rtype: ndarray, ndarray, bool
        """
        if not datExpr.apply(lambda s: pd.to_numeric(s, errors='coerce').notnull() | s.isnull()).all().all():
            raise ValueError("datExpr must contain numeric data.")

        goodGenes = np.repeat(True, datExpr.shape[1])
        goodSamples = np.repeat(True, datExpr.shape[0])
        nBadGenes = 0
        nBadSamples = 0
        changed = True
        print("\tDetecting genes and samples with too many missing values...", flush=True)
        while changed:
            goodGenes = Network.goodGenesFun(datExpr, goodSamples, goodGenes, minFraction=minFraction,
                                             minNSamples=minNSamples, minNGenes=minNGenes, tol=tol)
            goodSamples = Network.goodSamplesFun(datExpr, goodSamples, goodGenes, minFraction=minFraction,
                                                 minNSamples=minNSamples, minNGenes=minNGenes)
            changed = (np.logical_not(goodGenes).sum() > nBadGenes) or \
                      (np.logical_not(goodSamples).sum() > nBadSamples)
            nBadGenes = np.logical_not(goodGenes).sum()
            nBadSamples = np.logical_not(goodSamples).sum()

        allOK = (nBadGenes + nBadSamples == 0)

        return goodGenes, goodSamples, allOK

    # Filter genes with too many missing entries
    @staticmethod
    def goodGenesFun(datExpr, useSamples=None, useGenes=None, minFraction=1 / 2, minNSamples=4, minNGenes=4,
                     tol=None):
        values = datExpr.values.astype(float)
        if tol is None:
            tol = 1e-10 * np.nanmax(np.abs(values))
        if useGenes is None:
            useGenes = np.repeat(True, values.shape[1])
        if useSamples is None:
            useSamples = np.repeat(True, values.shape[0])
        if len(useGenes) != values.shape[1]:
            raise ValueError("Length of useGenes is not compatible with number of columns in datExpr.")
        if len(useSamples) != values.shape[0]:
            raise ValueError("Length of useSamples is not compatible with number of rows in datExpr.")

        nSamples = np.sum(useSamples)
        nGenes = np.sum(useGenes)
        sub = values[useSamples, :]
        nPresent = np.sum(~np.isnan(sub), axis=0)

        gg = np.logical_and(useGenes, nPresent >= minNSamples)
        var = np.nanvar(sub, axis=0, ddof=1)
        var[np.isnan(var)] = 0
        nNAsGenes = np.sum(np.isnan(sub), axis=0)
        gg = np.logical_and.reduce([gg, nNAsGenes < (1 - minFraction) * nSamples, var > tol ** 2,
                                    nSamples - nNAsGenes >= minNSamples])

        if np.sum(gg) < minNGenes:
            raise ValueError("Too few genes with valid expression levels in the required number of samples.")
        if nGenes - np.sum(gg) > 0:
            print("  ..Excluding", nGenes - np.sum(gg),
                  "genes from the calculation due to too many missing samples or zero variance.", flush=True)

        return gg

    # Filter samples with too many missing entries
    @staticmethod
    def goodSamplesFun(datExpr, useSamples=None, useGenes=None, minFraction=1 / 2, minNSamples=4, minNGenes=4):
        values = datExpr.values.astype(float)
        if useGenes is None:
            useGenes = np.repeat(True, values.shape[1])
        if useSamples is None:
            useSamples = np.repeat(True, values.shape[0])
        if len(useGenes) != values.shape[1]:
            raise ValueError("Length of useGenes is not compatible with number of columns in datExpr.")
        if len(useSamples) != values.shape[0]:
            raise ValueError("Length of useSamples is not compatible with number of rows in datExpr.")

        nSamples = np.sum(useSamples)
        nGenes = np.sum(useGenes)
        nNAsSamples = np.sum(np.isnan(values[:, useGenes]), axis=1)

        goodSamples = np.logical_and.reduce([useSamples, nNAsSamples < (1 - minFraction) * nGenes,
                                             nGenes - nNAsSamples >= minNGenes])

        if np.sum(goodSamples) < minNSamples:
            raise ValueError("Too few samples with valid expression levels for the required number of genes.")
        if nSamples - np.sum(goodSamples) > 0:
            print("  ..Excluding", nSamples - np.sum(goodSamples),
                  "samples from the calculation due to too many missing genes.", flush=True)

        return goodSamples

    @staticmethod
    def hclust(d, method="complete"):
        """
        hierarchical clustering
        """
        METHODS = ["single", "complete", "average", "weighted", "centroid"]

        if method not in METHODS:
            raise ValueError("Invalid clustering method.")

        return linkage(d, method=method)

    # Determine cluster under the line
    @staticmethod
    def cutree(sampleTree, cutHeight=50000.0):
        """
        remove samples/genes/modules base on hierarchical clustering
        """
        return cut_tree(sampleTree, height=cutHeight)

    # Call the network topology analysis function
    @staticmethod
    def pickSoftThreshold(data, RsquaredCut=0.85, MeanCut=100, powerVector=None, nBreaks=10, blockSize=None,
                          networkType="signed", moreNetworkConcepts=False):
        """
        Analysis of scale free topology for multiple soft thresholding powers

        :param data: expression data, samples in rows and genes in columns
        :type data: pandas dataframe
        :param RsquaredCut: desired minimum signed scale free topology fitting index R^2 (default: 0.85)
        :type RsquaredCut: float
        :param MeanCut: maximum mean connectivity of the chosen power (default: 100)
        :type MeanCut: float
        :param powerVector: soft thresholding powers for which the scale free topology fit indices are to be calculated
        :type powerVector: list of int
        :param nBreaks: number of bins in connectivity histograms (default: 10)
        :type nBreaks: int
        :param blockSize: block size into which the calculation of connectivity should be broken up
        :type blockSize: int
        :param networkType: network type, one of "unsigned", "signed" and "signed hybrid" (default: "signed")
        :type networkType: str
        :param moreNetworkConcepts: should additional network concepts be calculated (default: False)
        :type moreNetworkConcepts: bool

        :return: estimated power and the table of scale free fit indices
        :rtype: int, pandas dataframe
        """
        if powerVector is None:
            powerVector = list(range(1, 11)) + list(range(12, 21, 2))
        powerVector = np.sort(np.asarray(powerVector))
        if networkType not in networkTypes:
            raise ValueError(f"Unrecognized 'networkType'. Recognized values are {str(networkTypes)}")
        intType = networkTypes.index(networkType)

        nGenes = data.shape[1]
        nSamples = data.shape[0]
        if nGenes < 3:
            raise ValueError("The input data contain fewer than 3 genes (nodes).\n"
                             "This would result in a trivial correlation network.")

        print(f"{OKCYAN}pickSoftThreshold: calculating connectivity for given powers...{ENDC}")

        if blockSize is None:
            blockSize = Network.calBlockSize(nGenes, rectangularBlocks=True, maxMemoryAllocation=2 ** 30)
            print("will use block size ", blockSize, flush=True)

        colname1 = ["Power", "SFT.R.sq", "slope", "truncated R.sq", "mean(k)", "median(k)", "max(k)"]
        if moreNetworkConcepts:
            colname1 = colname1 + ["Density", "Centralization", "Heterogeneity"]

        datout = pd.DataFrame(np.nan, index=range(len(powerVector)), columns=colname1)
        datout['Power'] = powerVector

        scaled = scale(data.values.astype(float))
        datk = np.zeros((nGenes, len(powerVector)))
        nPowers = len(powerVector)
        powerVector1 = np.concatenate(([0], powerVector[:-1]))
        powerSteps = powerVector - powerVector1

        startG = 0
        while startG < nGenes:
            endG = min(startG + blockSize, nGenes)
            useGenes = list(range(startG, endG))

            corx = np.matmul(scaled.T, scaled[:, useGenes]) / nSamples
            if intType == 0:
                corx = np.abs(corx)
            elif intType == 1:
                corx = (1 + corx) / 2
            elif intType == 2:
                corx[corx < 0] = 0
            if np.count_nonzero(np.isnan(corx)) != 0:
                print(f"{WARNING}Some correlations are NA in block {str(startG)} : {str(endG)}.{ENDC}")
            corx[useGenes, list(range(len(useGenes)))] = 1

            datk_local = np.empty((len(useGenes), nPowers))
            corxPrev = np.ones(corx.shape)
            corxPowers = {p: corx ** p for p in np.unique(powerSteps)}
            for j in range(nPowers):
                corxCur = corxPrev * corxPowers[powerSteps[j]]
                datk_local[:, j] = np.nansum(corxCur, axis=0) - 1
                corxPrev = corxCur

            datk[startG:endG, :] = datk_local
            startG = endG

        for i in range(len(powerVector)):
            khelp = datk[:, i]
            SFT1 = Network.scaleFreeFitIndex(k=khelp, nBreaks=nBreaks)
            datout.loc[i, 'SFT.R.sq'] = SFT1.loc[0, 'Rsquared.SFT']
            datout.loc[i, 'slope'] = SFT1.loc[0, 'slope.SFT']
            datout.loc[i, 'truncated R.sq'] = SFT1.loc[0, 'truncatedExponentialAdjRsquared']
            datout.loc[i, 'mean(k)'] = statistics.mean(khelp)
            datout.loc[i, 'median(k)'] = statistics.median(khelp)
            datout.loc[i, 'max(k)'] = max(khelp)

            if moreNetworkConcepts:
                Density = sum(khelp) / (nGenes * (nGenes - 1))
                datout.loc[i, 'Density'] = Density
                Centralization = nGenes * (max(khelp) - statistics.mean(khelp)) / ((nGenes - 1) * (nGenes - 2))
                datout.loc[i, 'Centralization'] = Centralization
                Heterogeneity = np.sqrt(nGenes * sum(khelp ** 2) / sum(khelp) ** 2 - 1)
                datout.loc[i, 'Heterogeneity'] = Heterogeneity

        print(datout)

        # scale free fit is judged on the signed R^2
        signedRsq = -1 * np.sign(datout['slope']) * datout['SFT.R.sq']
        ind = np.logical_and(signedRsq > RsquaredCut, datout['mean(k)'] <= MeanCut)
        if np.sum(ind) > 0:
            powerEstimate = int(np.min(powerVector[ind.values]))
            print(f"{OKGREEN}Selected power to have scale free network is {str(powerEstimate)}.{ENDC}")
        else:
            powerEstimate = int(powerVector[int(np.nanargmax(signedRsq.values))])
            print(f"{OKGREEN}No power detected to have scale free network!\nFound the best given power which is "
                  f"{str(powerEstimate)}.{ENDC}")

        return powerEstimate, datout

    @staticmethod
    def calBlockSize(matrixSize, rectangularBlocks=True, maxMemoryAllocation=None, overheadFactor=3):
        if maxMemoryAllocation is None:
            maxAlloc = psutil.virtual_memory().available / 8
        else:
            maxAlloc = maxMemoryAllocation / 8

        maxAlloc = maxAlloc / overheadFactor

        if rectangularBlocks:
            blockSz = math.floor(maxAlloc / matrixSize)
        else:
            blockSz = math.floor(math.sqrt(maxAlloc))

        return max(1, min(matrixSize, blockSz))

    # Calculation of fitting statistics for evaluating scale free topology fit.
    @staticmethod
    def scaleFreeFitIndex(k, nBreaks=10):
        k = np.asarray(k, dtype=float)
        df = pd.DataFrame({'data': k})
        df['discretized_k'] = pd.cut(df['data'], nBreaks)
        grouped = df.groupby('discretized_k', observed=False)['data']
        dk = grouped.mean().values  # tapply(k, discretized_k, mean)
        p_dk = grouped.count().values / len(k)  # tapply(k, discretized.k, length)/length(k)
        breaks1 = np.linspace(start=min(k), stop=max(k), num=nBreaks + 1)
        dk2 = 0.5 * (breaks1[1:] + breaks1[:-1])
        dk = np.where(np.isnan(dk), dk2, dk)
        dk = np.where(dk == 0, dk2, dk)
        p_dk = np.where(np.isnan(p_dk), 0, p_dk)

        fit = pd.DataFrame({'log_dk': np.log10(dk), 'log_p_dk': np.log10(p_dk + 1e-09)})
        fit['log_p_dk_10'] = np.power(10, fit['log_dk'])

        model1 = ols(formula='log_p_dk ~ log_dk', data=fit).fit()
        model2 = ols(formula='log_p_dk ~ log_dk + log_p_dk_10', data=fit).fit()
        dfout = pd.DataFrame({'Rsquared.SFT': [model1.rsquared],
                              'slope.SFT': [model1.params.values[1]],
                              'truncatedExponentialAdjRsquared': [model2.rsquared_adj]})
        return dfout

    @staticmethod
    def adjacency(datExpr, adjacencyType="signed", power=6):
        """
        Calculates correlation network adjacency from given expression data

        :param datExpr: expression data, samples in rows and genes in columns
        :type datExpr: pandas dataframe or ndarray
        :param adjacencyType: type of network: "unsigned", "signed" or "signed hybrid" (default: "signed")
        :type adjacencyType: str
        :param power: soft thresholding power (default: 6)
        :type power: int

        :return: adjacency matrix (genes x genes)
        :rtype: ndarray
        """
        print(f"{OKCYAN}calculating adjacency matrix ...{ENDC}")
        if adjacencyType not in adjacencyTypes:
            raise ValueError(f"Unrecognized 'type'. Recognized values are {str(adjacencyTypes)}")
        intType = adjacencyTypes.index(adjacencyType)

        cor_mat = np.corrcoef(np.asarray(datExpr, dtype=float), rowvar=False)

        if intType == 0:
            cor_mat = abs(cor_mat)
        elif intType == 1:
            cor_mat = (1 + cor_mat) / 2
        elif intType == 2:
            cor_mat[cor_mat < 0] = 0

        print("\tDone..\n")

        return cor_mat ** power

    @staticmethod
    def checkAdjMat(adjMat, min=0, max=1):
        shape = adjMat.shape
        if shape is None or len(shape) != 2:
            raise ValueError("adjacency is not two-dimensional")
        if not issubclass(adjMat.dtype.type, np.floating):
            raise ValueError("adjacency is not numeric")
        if shape[0] != shape[1]:
            raise ValueError("adjacency is not square")
        if np.nanmax(np.fabs(np.subtract(adjMat, adjMat.T))) > 1e-12:
            raise ValueError("adjacency is not symmetric")
        if np.nanmin(adjMat) < min or np.nanmax(adjMat) > max:
            raise ValueError(f"some entries are not between {min} and {max}")

    @staticmethod
    def TomSimilarityFromAdj(adjMat, TOMDenom, TOMType):
        adjMat = adjMat.copy()
        np.fill_diagonal(adjMat, 0)
        absAdj = np.fabs(adjMat)
        L = np.matmul(adjMat, adjMat)
        k = absAdj.sum(axis=1)
        if TOMDenom == 0:  # min
            MINK = np.minimum.outer(k, k)
        else:  # mean
            MINK = np.add.outer(k, k) / 2
        if TOMType == 1:  # unsigned
            tom = (L + adjMat) / (MINK + 1 - adjMat)
        else:  # signed
            tom = np.fabs(L + adjMat) / (MINK + 1 - absAdj)
        np.fill_diagonal(tom, 1)
        return tom

    @staticmethod
    def TOMsimilarity(adjMat, TOMType="signed", TOMDenom="min"):
        """
        Calculation of the topological overlap matrix from a given adjacency matrix

        :param adjMat: adjacency matrix
        :type adjMat: ndarray
        :param TOMType: "unsigned" or "signed" (default: "signed")
        :type TOMType: str
        :param TOMDenom: "min" or "mean" (default: "min")
        :type TOMDenom: str

        :return: topological overlap matrix
        :rtype: ndarray
        """
        if TOMType not in TOMTypes:
            raise ValueError(f"Invalid 'TOMType'. Recognized values are {str(TOMTypes)}")
        TOMTypeC = TOMTypes.index(TOMType)
        if TOMTypeC == 0:
            raise ValueError("'TOMType' cannot be 'NA' for this function.")
        if TOMDenom not in TOMDenoms:
            raise ValueError(f"Invalid 'TOMDenom'. Recognized values are {str(TOMDenoms)}")
        TOMDenomC = TOMDenoms.index(TOMDenom)

        adjMat = np.asarray(adjMat, dtype=float)
        min = 0
        if TOMTypeC == 2:
            min = -1
        Network.checkAdjMat(adjMat, min=min, max=1)
        adjMat = np.nan_to_num(adjMat, nan=0)

        print(f"{OKCYAN}calculating TOM similarity matrix ...{ENDC}")

        tom = Network.TomSimilarityFromAdj(adjMat, TOMDenomC, TOMTypeC)

        print("\tDone..\n")

        return tom

    @staticmethod
    def interpolate(data, index):
        i = math.floor(index)
        n = len(data)
        if i < 0:
            return data[0]
        if i >= n - 1:
            return data[n - 1]
        r = index - i
        return data[i] * (1 - r) + data[i + 1] * r

    @staticmethod
    def coreSizeFunc(BranchSize, minClusterSize):
        BaseCoreSize = minClusterSize / 2 + 1
        if BaseCoreSize < BranchSize:
            CoreSize = int(BaseCoreSize + math.sqrt(BranchSize - BaseCoreSize))
        else:
            CoreSize = BranchSize

        return CoreSize

    @staticmethod
    def coreScatter(singletons, distM, minClusterSize):
        coresize = Network.coreSizeFunc(len(singletons), minClusterSize)
        Core = singletons[0:coresize]
        if coresize < 2:
            return 0
        return np.mean(distM[np.ix_(Core, Core)].sum(axis=0) / (coresize - 1))

    @staticmethod
    def cutreeHybrid(dendro, distM, cutHeight=None, minClusterSize=20, deepSplit=1,
                     maxCoreScatter=None, minGap=None, maxAbsCoreScatter=None, minAbsGap=None,
                     minSplitHeight=None, minAbsSplitHeight=None, pamStage=True,
                     pamRespectsDendro=True, maxPamDist=None, respectSmallClusters=True):
        """
        Detect clusters in a dendrogram produced by average linkage hierarchical clustering.

        :param dendro: linkage matrix as returned by scipy linkage
        :type dendro: ndarray
        :param distM: distance matrix that was used as input to hierarchical clustering
        :type distM: ndarray
        :param cutHeight: maximum joining heights that will be considered (default: 99% of the range between the 5th percentile and the maximum of the joining heights)
        :type cutHeight: float
        :param minClusterSize: minimum cluster size (default: 20)
        :type minClusterSize: int
        :param deepSplit: sensitivity of the cluster splitting, in the range 0 to 4 (default: 1)
        :type deepSplit: int or bool
        :param pamStage: should the PAM-like stage assign unlabeled objects to clusters (default: True)
        :type pamStage: bool
        :param pamRespectsDendro: should the PAM stage only assign objects to clusters on the same branch (default: True)
        :type pamRespectsDendro: bool
        :param maxPamDist: maximum object distance to closest cluster that will result in the object assigned to that cluster (default: cutHeight)
        :type maxPamDist: float
        :param respectSmallClusters: keep branches that failed only because of their size together in the PAM stage (default: True)
        :type respectSmallClusters: bool

        :return: numeric labels, 0 for unassigned objects, 1 for the largest cluster
        :rtype: ndarray
        """
        dendro = np.asarray(dendro, dtype=float)
        distM = np.array(distM, dtype=float)

        nMerge = dendro.shape[0]
        if nMerge < 1:
            raise ValueError("The given dendrogram is suspicious: number of merges is zero.")
        nPoints = nMerge + 1
        if distM.shape != (nPoints, nPoints):
            raise ValueError("distM has incorrect dimensions.")
        if pamRespectsDendro and not respectSmallClusters:
            print(f"{WARNING}cutreeHybrid: parameters pamRespectsDendro (True) and respectSmallClusters (False) "
                  f"imply contradictory intent.{ENDC}")

        print(f"{OKCYAN}Going through the merge tree...{ENDC}")

        np.fill_diagonal(distM, 0)
        heights = dendro[:, 2]
        refQuantile = 0.05
        refMerge = max(int(round(nMerge * refQuantile)) - 1, 0)
        refHeight = np.sort(heights)[refMerge]
        if cutHeight is None:
            cutHeight = 0.99 * (np.max(heights) - refHeight) + refHeight
            print("..cutHeight not given, setting it to", round(cutHeight, 3),
                  " ===>  99% of the (truncated) height range in dendro.", flush=True)
        elif cutHeight > np.max(heights):
            cutHeight = np.max(heights)
        if maxPamDist is None:
            maxPamDist = cutHeight

        nMergeBelowCut = np.count_nonzero(heights <= cutHeight)
        if nMergeBelowCut < minClusterSize:
            print("cutHeight set too low: no merges below the cut.", flush=True)
            return np.zeros(nPoints, dtype=int)

        defMCS = [0.64, 0.73, 0.82, 0.91, 0.95]
        defMG = [(1.0 - defMC) * 3.0 / 4.0 for defMC in defMCS]
        nSplitDefaults = len(defMCS)
        if isinstance(deepSplit, bool):
            deepSplit = int(deepSplit) * (nSplitDefaults - 2)
        if deepSplit < 0 or deepSplit > nSplitDefaults - 1:
            raise ValueError(f"Parameter deepSplit (value {deepSplit}) out of range: allowable range is 0 through "
                             f"{nSplitDefaults - 1}")
        if maxCoreScatter is None:
            maxCoreScatter = Network.interpolate(defMCS, deepSplit)
        if minGap is None:
            minGap = Network.interpolate(defMG, deepSplit)
        if maxAbsCoreScatter is None:
            maxAbsCoreScatter = refHeight + maxCoreScatter * (cutHeight - refHeight)
        if minAbsGap is None:
            minAbsGap = minGap * (cutHeight - refHeight)
        if minSplitHeight is None:
            minSplitHeight = 0
        if minAbsSplitHeight is None:
            minAbsSplitHeight = refHeight + minSplitHeight * (cutHeight - refHeight)

        branch_isBasic = []
        branch_isTopBasic = []
        branch_failSize = []
        branch_size = []
        branch_attachHeight = []
        branch_mergedInto = []
        branch_singletons = []
        branch_basicClusters = []
        IndMergeToBranch = np.repeat(-1, nMerge)
        onBranch = np.repeat(-1, nPoints)

        def newBranch(isBasic, size, singletons, basicClusters):
            branch_isBasic.append(isBasic)
            branch_isTopBasic.append(isBasic)
            branch_failSize.append(False)
            branch_size.append(size)
            branch_attachHeight.append(np.nan)
            branch_mergedInto.append(-1)
            branch_singletons.append(singletons)
            branch_basicClusters.append(basicClusters)
            return len(branch_isBasic) - 1

        for merge in range(nMerge):
            height = heights[merge]
            if height > cutHeight:
                continue
            a, b = int(dendro[merge, 0]), int(dendro[merge, 1])
            if a < nPoints and b < nPoints:
                IndMergeToBranch[merge] = newBranch(True, 2, [a, b], [])
            elif (a < nPoints) != (b < nPoints):
                gene = min(a, b)
                clust = IndMergeToBranch[max(a, b) - nPoints]
                if clust == -1:
                    raise RuntimeError("Internal error: a previous merge has no associated cluster.")
                if branch_isBasic[clust]:
                    branch_singletons[clust].append(gene)
                else:
                    onBranch[gene] = clust
                branch_size[clust] = branch_size[clust] + 1
                IndMergeToBranch[merge] = clust
            else:
                clusts = [IndMergeToBranch[a - nPoints], IndMergeToBranch[b - nPoints]]
                if branch_size[clusts[0]] <= branch_size[clusts[1]]:
                    small, large = clusts
                else:
                    large, small = clusts

                SmAveDist = Network.coreScatter(branch_singletons[small], distM, minClusterSize) \
                    if branch_isBasic[small] else 0
                LgAveDist = Network.coreScatter(branch_singletons[large], distM, minClusterSize) \
                    if branch_isBasic[large] else 0

                SmallerScores = [branch_isBasic[small], branch_size[small] < minClusterSize,
                                 SmAveDist > maxAbsCoreScatter, height - SmAveDist < minAbsGap,
                                 height < minAbsSplitHeight]
                LargerScores = [branch_isBasic[large], branch_size[large] < minClusterSize,
                                LgAveDist > maxAbsCoreScatter, height - LgAveDist < minAbsGap,
                                height < minAbsSplitHeight]
                SmallerFailSize = False
                if SmallerScores[0] and any(SmallerScores[1:]):
                    DoMerge = True
                    SmallerFailSize = not (SmallerScores[2] or SmallerScores[3])
                elif LargerScores[0] and any(LargerScores[1:]):
                    DoMerge = True
                    SmallerFailSize = not (LargerScores[2] or LargerScores[3])
                    small, large = large, small
                else:
                    DoMerge = False

                if DoMerge:
                    branch_failSize[small] = SmallerFailSize
                    branch_mergedInto[small] = large
                    branch_attachHeight[small] = height
                    branch_isTopBasic[small] = False
                    if branch_isBasic[large]:
                        branch_singletons[large].extend(branch_singletons[small])
                    else:
                        if not branch_isBasic[small]:
                            raise RuntimeError("Internal error: merging two composite clusters.")
                        onBranch[branch_singletons[small]] = large
                    branch_size[large] = branch_size[large] + branch_size[small]
                    IndMergeToBranch[merge] = large
                else:
                    if branch_isBasic[large] and not branch_isBasic[small]:
                        small, large = large, small

                    addBasicClusters = [small] if branch_isBasic[small] else list(branch_basicClusters[small])
                    if branch_isBasic[large] or (pamStage and pamRespectsDendro):
                        if branch_isBasic[large]:
                            addBasicClusters.append(large)
                        else:
                            addBasicClusters.extend(branch_basicClusters[large])
                        composite = newBranch(False, branch_size[small] + branch_size[large], [],
                                              addBasicClusters)
                        for clust in [large, small]:
                            branch_attachHeight[clust] = height
                            branch_mergedInto[clust] = composite
                        IndMergeToBranch[merge] = composite
                    else:
                        branch_basicClusters[large].extend(addBasicClusters)
                        branch_size[large] = branch_size[large] + branch_size[small]
                        branch_attachHeight[small] = height
                        branch_mergedInto[small] = large
                        IndMergeToBranch[merge] = large

        nBranches = len(branch_isBasic)
        isCluster = np.repeat(False, nBranches)
        SmallLabels = np.repeat(0, nPoints)

        for clust in range(nBranches):
            if np.isnan(branch_attachHeight[clust]):
                branch_attachHeight[clust] = cutHeight
            if branch_isTopBasic[clust]:
                CoreScatter = Network.coreScatter(branch_singletons[clust], distM, minClusterSize)
                isCluster[clust] = (branch_size[clust] >= minClusterSize and
                                    CoreScatter < maxAbsCoreScatter and
                                    branch_attachHeight[clust] - CoreScatter > minAbsGap)
            if branch_failSize[clust]:
                SmallLabels[branch_singletons[clust]] = clust + 1

        if not respectSmallClusters:
            SmallLabels = np.repeat(0, nPoints)

        Colors = np.repeat(0, nPoints)
        branchLabels = np.repeat(0, nBranches)
        color = 0
        for clust in np.where(isCluster)[0].tolist():
            color = color + 1
            Colors[branch_singletons[clust]] = color
            SmallLabels[branch_singletons[clust]] = 0
            branchLabels[clust] = color

        nProperLabels = color

        def labelsOnBranch(onBr):
            labels = branchLabels[branch_basicClusters[onBr]]
            return np.unique(labels[labels != 0])

        if pamStage and np.any(Colors == 0) and nProperLabels > 0:
            ClusterDiam = np.zeros(nProperLabels + 1)
            for cluster in range(1, nProperLabels + 1):
                InCluster = np.where(Colors == cluster)[0]
                nInCluster = len(InCluster)
                if nInCluster > 1:
                    AveDistInClust = distM[np.ix_(InCluster, InCluster)].sum(axis=0) / (nInCluster - 1)
                    ClusterDiam[cluster] = np.max(AveDistInClust)

            ColorsX = Colors.copy()
            if respectSmallClusters:
                SmallLabLevs = np.unique(SmallLabels[SmallLabels != 0])
                for sclust in SmallLabLevs:
                    InCluster = np.where(SmallLabels == sclust)[0]
                    if pamRespectsDendro:
                        onBr = np.unique(onBranch[InCluster])
                        if len(onBr) > 1:
                            raise RuntimeError("Internal error: objects in a small cluster are marked to belong "
                                               f"to several large branches: {onBr}")
                        if onBr[0] < 0:
                            continue
                        useObjects = np.where(np.isin(ColorsX, labelsOnBranch(onBr[0])))[0]
                    else:
                        useObjects = np.where(ColorsX != 0)[0]
                    if len(useObjects) == 0:
                        continue
                    MeanDist = distM[np.ix_(InCluster, useObjects)].mean(axis=0)
                    useColors = ColorsX[useObjects]
                    levels = np.unique(useColors)
                    MeanMeanDist = np.array([MeanDist[useColors == level].mean() for level in levels])
                    nearest = np.argmin(MeanMeanDist)
                    NearestDist = MeanMeanDist[nearest]
                    nearestLabel = levels[nearest]
                    if NearestDist < ClusterDiam[nearestLabel] or NearestDist < maxPamDist:
                        Colors[InCluster] = nearestLabel
                    else:
                        Colors[InCluster] = -1

            Unlabeled = np.where(Colors == 0)[0]
            if len(Unlabeled) > 0:
                if pamRespectsDendro:
                    for obj in Unlabeled[onBranch[Unlabeled] >= 0]:
                        useObjects = np.where(np.isin(ColorsX, labelsOnBranch(onBranch[obj])))[0]
                        if len(useObjects) == 0:
                            continue
                        useColors = ColorsX[useObjects]
                        levels = np.unique(useColors)
                        UnassdToClustDist = np.array([distM[useObjects[useColors == level], obj].mean()
                                                      for level in levels])
                        nearest = np.argmin(UnassdToClustDist)
                        NearestClusterDist = UnassdToClustDist[nearest]
                        nearestLabel = levels[nearest]
                        if NearestClusterDist < ClusterDiam[nearestLabel] or NearestClusterDist < maxPamDist:
                            Colors[obj] = nearestLabel
                else:
                    useObjects = np.where(ColorsX != 0)[0]
                    useColors = ColorsX[useObjects]
                    levels = np.unique(useColors)
                    tmp = distM[np.ix_(useObjects, Unlabeled)]
                    # apply(distM[useObjects, Unlabeled], 2, tapply, useColorsFac, mean)
                    UnassdToClustDist = np.vstack([tmp[useColors == level, :].mean(axis=0) for level in levels])
                    nearest = np.argmin(UnassdToClustDist, axis=0)
                    nearestDist = np.min(UnassdToClustDist, axis=0)
                    nearestLabel = levels[nearest]
                    assign = np.logical_or(nearestDist < ClusterDiam[nearestLabel], nearestDist < maxPamDist)
                    Colors[Unlabeled[assign]] = nearestLabel[assign]

        Colors[Colors < 0] = 0

        # relabel so that 1 is the largest cluster
        labels, sizes = np.unique(Colors[Colors != 0], return_counts=True)
        order = np.argsort(-sizes, kind='stable')
        newLabels = {labels[o]: rank + 1 for rank, o in enumerate(order)}
        OrdNumLabs = np.array([newLabels.get(c, 0) for c in Colors], dtype=int)

        print("\tDone..\n")

        return OrdNumLabs

    @staticmethod
    def colorSequence(naColor="grey"):
        """
        WGCNA standard colors followed by the remaining CSS4 colors sorted by hue, saturation, value and name
        """
        colorSeq = [color for color in standardColors if color != naColor]
        by_hsv = sorted((tuple(mcolors.rgb_to_hsv(mcolors.to_rgba(color)[:3])), name)
                        for name, color in mcolors.CSS4_COLORS.items())
        colorSeq = colorSeq + [name for hsv, name in by_hsv if name not in colorSeq and name != naColor]
        return colorSeq

    @staticmethod
    def labels2colors(labels, zeroIsGrey=True, colorSeq=None, naColor="grey"):
        """
        Converts a vector of numerical labels into a corresponding vector of colors corresponding to the labels.

        :param labels: numeric labels
        :type labels: list or ndarray
        :param zeroIsGrey: should label 0 get naColor (default: True)
        :type zeroIsGrey: bool
        :param colorSeq: color sequence to use (default: WGCNA standard colors)
        :type colorSeq: list of str
        :param naColor: color of label 0 and missing labels (default: "grey")
        :type naColor: str

        :return: colors
        :rtype: ndarray
        """
        if colorSeq is None:
            colorSeq = Network.colorSequence(naColor=naColor)

        labels = pd.Series(np.asarray(labels)).astype(float)
        minLabel = 1 if zeroIsGrey else 0
        maxLabel = labels.max()
        if maxLabel - minLabel + 1 > len(colorSeq):
            nRepeats = int((maxLabel - minLabel) / len(colorSeq)) + 1
            print(f"{WARNING}labels2colors: Number of labels exceeds number of available colors.\n"
                  f"Some colors will be repeated {str(nRepeats)} times.{ENDC}")
            extColorSeq = list(colorSeq)
            for rep in range(1, nRepeats):
                extColorSeq = extColorSeq + [str(item) + "." + str(rep) for item in colorSeq]
        else:
            extColorSeq = colorSeq

        colors = np.empty(len(labels), dtype=object)
        for i, label in enumerate(labels):
            if np.isnan(label) or (zeroIsGrey and label == 0):
                colors[i] = naColor
            else:
                colors[i] = extColorSeq[int(label) - minLabel]

        return colors

    @staticmethod
    def colors2labels(colors, colorSeq=None, naColor="grey"):
        """
        Inverse of labels2colors: naColor gets 0 and a color repeated with a ".n" suffix gets the label after
        n rounds of the color sequence
        """
        if colorSeq is None:
            colorSeq = Network.colorSequence(naColor=naColor)

        labels = np.zeros(len(colors), dtype=int)
        for i, color in enumerate(colors):
            if color == naColor:
                continue
            base, _, rep = str(color).partition('.')
            if base not in colorSeq or (rep != '' and not rep.isdigit()):
                raise ValueError(f"{color} is not a color of the module color sequence!")
            labels[i] = colorSeq.index(base) + 1 + int(rep or 0) * len(colorSeq)

        return labels

    @staticmethod
    def moduleEigengenes(expr, colors, impute=True, nPC=1, align="along average", excludeGrey=False, grey="grey",
                         subHubs=True, softPower=6, scaleVar=True, trapErrors=False):
        """
        Calculates module eigengenes (1st principal component) of modules in a given single dataset.

        :param expr: expression data, samples in rows and genes in columns
        :type expr: pandas dataframe
        :param colors: module color (or label) of each gene
        :type colors: list or ndarray
        :param impute: should missing values be imputed (default: True)
        :type impute: bool
        :param nPC: number of principal components for variance explained (default: 1)
        :type nPC: int
        :param align: "along average" to make eigengenes correlate positively with module average expression, or "" (default: "along average")
        :type align: str
        :param excludeGrey: should the grey module be excluded (default: False)
        :type excludeGrey: bool
        :param grey: name of the unassigned module (default: "grey")
        :type grey: str
        :param subHubs: use hub gene summaries when the principal component calculation fails (default: True)
        :type subHubs: bool
        :param softPower: power used in the hub gene fallback (default: 6)
        :type softPower: int
        :param trapErrors: remove failing modules instead of raising (default: False)
        :type trapErrors: bool

        :return: dictionary with "eigengenes", "averageExpr", "varExplained" and validity information
        :rtype: dict
        """
        colors = np.asarray(colors)
        print(f"{OKCYAN}Calculating {len(np.unique(colors))} module eigengenes in given set...{ENDC}")
        if expr is None:
            raise ValueError("moduleEigengenes: Error: expr is None.")
        if colors is None:
            raise ValueError("moduleEigengenes: Error: colors is None.")
        if len(expr.shape) != 2:
            raise ValueError("moduleEigengenes: Error: expr must be two-dimensional.")
        if expr.shape[1] != len(colors):
            raise ValueError("moduleEigengenes: Error: ncol(expr) and length(colors) must be equal "
                             "(one color per gene).")
        if softPower < 0:
            raise ValueError("softPower must be non-negative")
        maxVarExplained = 10
        if nPC > maxVarExplained:
            print(f"{WARNING}Given nPC is too large. Will use value {str(maxVarExplained)}{ENDC}")
        nVarExplained = min(nPC, maxVarExplained)
        if np.issubdtype(colors.dtype, np.number):
            grey = 0
        modlevels = pd.Categorical(colors).categories
        if excludeGrey:
            modlevels = modlevels[modlevels != grey]
            if len(modlevels) == 0:
                raise ValueError("Color levels are empty. Possible reason: the only color is grey and grey module "
                                 "is excluded from the calculation.")

        PrinComps = pd.DataFrame(np.nan, index=expr.index, columns=["ME" + str(m) for m in modlevels])
        averExpr = pd.DataFrame(np.nan, index=expr.index, columns=["AE" + str(m) for m in modlevels])
        varExpl = pd.DataFrame(np.nan, index=range(nVarExplained), columns=PrinComps.columns)
        validMEs = np.repeat(True, len(modlevels))
        validAEs = np.repeat(False, len(modlevels))
        isPC = np.repeat(True, len(modlevels))
        isHub = np.repeat(False, len(modlevels))
        validColors = colors.copy()

        for i in range(len(modlevels)):
            modulename = modlevels[i]
            restrict1 = (colors == modulename)
            datModule = expr.loc[:, restrict1].astype(float)
            n = datModule.shape[1]
            p = datModule.shape[0]
            if impute and datModule.isnull().values.any():
                imputer = KNNImputer(n_neighbors=min(10, datModule.shape[0] - 1))
                datModule = pd.DataFrame(imputer.fit_transform(datModule), index=datModule.index,
                                         columns=datModule.columns)
            scaledExpr = scale(datModule.values) if scaleVar else datModule.values
            pc = None
            try:
                u, d, v = np.linalg.svd(scaledExpr, full_matrices=False)
                nComp = min(n, p, nVarExplained)
                veMat = np.array([[np.corrcoef(u[:, c], scaledExpr[:, g])[0, 1] for g in range(n)]
                                  for c in range(nComp)])
                varExpl.iloc[0:nComp, i] = np.nanmean(veMat ** 2, axis=1)
                pc = u[:, 0]
            except np.linalg.LinAlgError as error:
                if not subHubs:
                    raise
                print(f"{WARNING} ..principal component calculation for module {modulename} failed with the "
                      f"following error: {error}\n     ..hub genes will be used instead of principal "
                      f"components.{ENDC}")
                isPC[i] = False
                try:
                    covEx = np.cov(scaledExpr, rowvar=False)
                    covEx[~np.isfinite(covEx)] = 0
                    modAdj = np.abs(covEx) ** softPower
                    kIM = np.nanmean(modAdj, axis=0) ** 3
                    if np.nanmax(kIM) > 1:
                        kIM = kIM - 1
                    kIM[np.isnan(kIM)] = 0
                    hub = np.argmax(kIM)
                    alignSign = np.sign(covEx[:, hub])
                    alignSign[np.isnan(alignSign)] = 0
                    isHub[i] = True
                    pcxMat = scaledExpr * (kIM * alignSign)[np.newaxis, :] / np.sum(kIM)
                    pc = np.nanmean(pcxMat, axis=1)
                    varExpl.iloc[0, i] = np.nanmean([np.corrcoef(pc, scaledExpr[:, g])[0, 1] ** 2
                                                     for g in range(n)])
                except (ValueError, np.linalg.LinAlgError) as error:
                    if not trapErrors:
                        raise
                    print(f"{WARNING}Eigengene calculation of module {modulename} failed with the following error "
                          f"\n{error} The offending module has been removed.{ENDC}")
                    validMEs[i] = False
                    isPC[i] = False
                    isHub[i] = False
                    validColors[restrict1] = grey
                    continue

            PrinComps.iloc[:, i] = pc
            averExpr.iloc[:, i] = np.nanmean(scaledExpr, axis=1)
            if align == "along average":
                corAve = np.corrcoef(averExpr.iloc[:, i], PrinComps.iloc[:, i])[0, 1]
                if not np.isfinite(corAve):
                    corAve = 0
                if corAve < 0:
                    PrinComps.iloc[:, i] = -1 * PrinComps.iloc[:, i]
            validAEs[i] = True

        allOK = (sum(np.logical_not(validMEs)) == 0)
        if trapErrors and not allOK:
            PrinComps = PrinComps.loc[:, validMEs]
            averExpr = averExpr.loc[:, validMEs]
            varExpl = varExpl.loc[:, validMEs]
            isPC = isPC[validMEs]
            isHub = isHub[validMEs]
            validAEs = validAEs[validMEs]
            validMEs = np.repeat(True, PrinComps.shape[1])

        allPC = (sum(np.logical_not(isPC)) == 0)
        allAEOK = (sum(np.logical_not(validAEs)) == 0)

        print("\tDone..\n")

        return {"eigengenes": PrinComps, "averageExpr": averExpr, "varExplained": varExpl, "nPC": nPC,
                "validMEs": validMEs, "validColors": validColors, "allOK": allOK, "allPC": allPC, "isPC": isPC,
                "isHub": isHub, "validAEs": validAEs, "allAEOK": allAEOK}

    @staticmethod
    def clustOrder(distM, greyLast=True, greyName="MEgrey"):
        distNames = distM.index.tolist()
        useMEs = [i for i, name in enumerate(distNames) if not (greyLast and name == greyName)]
        if len(useMEs) > 1:
            sub = distM.iloc[useMEs, useMEs].values
            h = Network.hclust(squareform(sub, checks=False), method="average")
            order = [useMEs[i] for i in dendrogram(h, no_plot=True)['leaves']]
        else:
            order = useMEs
        if greyLast and greyName in distNames:
            order.append(distNames.index(greyName))
        return order

    @staticmethod
    def orderMEs(MEs, greyLast=True, greyName="MEgrey", order=None):
        """
        Reorder given eigengenes such that similar ones (as measured by correlation) are next to each other.

        :param MEs: module eigengenes, samples in rows
        :type MEs: pandas dataframe
        :param greyLast: should the grey eigengene be put last (default: True)
        :type greyLast: bool
        :param greyName: name of the grey eigengene (default: "MEgrey")
        :type greyName: str
        :param order: explicit column order
        :type order: list of int

        :return: reordered eigengenes
        :rtype: pandas dataframe
        """
        if MEs.shape[1] < 2:
            return MEs
        if order is None:
            disPC = pd.DataFrame(1 - np.corrcoef(MEs.values, rowvar=False), index=MEs.columns, columns=MEs.columns)
            order = Network.clustOrder(disPC, greyLast=greyLast, greyName=greyName)
        if len(order) != MEs.shape[1]:
            raise ValueError("orderMEs: given MEs and order have incompatible dimensions.")
        return MEs.iloc[:, order]

    @staticmethod
    def mergeCloseModules(exprData, colors, cutHeight=0.2, unassdColor="grey", iterate=True, getNewMEs=True):
        """
        Merges modules in gene expression networks that are too close as measured by the correlation of their eigengenes.

        :param exprData: expression data, samples in rows and genes in columns
        :type exprData: pandas dataframe
        :param colors: module color of each gene
        :type colors: list or ndarray
        :param cutHeight: maximum dissimilarity (1 - correlation) of eigengenes that qualifies modules for merging (default: 0.2)
        :type cutHeight: float
        :param unassdColor: color of unassigned genes (default: "grey")
        :type unassdColor: str
        :param iterate: should the merging be repeated until it is stable (default: True)
        :type iterate: bool
        :param getNewMEs: should eigengenes of merged modules be calculated (default: True)
        :type getNewMEs: bool

        :return: dictionary with merged "colors", eigengene trees, old and new eigengenes
        :rtype: dict
        """
        colors = np.asarray(colors, dtype=object).copy()
        if exprData.shape[1] != len(colors):
            raise ValueError("Number of genes in exprData is different from the length of original colors. "
                             "They must equal.")
        if cutHeight < 0 or cutHeight > 1:
            raise ValueError("Given cutHeight is out of sensible range between 0 and 1")
        print("mergeCloseModules: Merging modules whose distance is less than", str(cutHeight), flush=True)

        greyName = "ME" + str(unassdColor)
        oldMEs = None
        oldTree = None
        Tree = None
        iteration = 1
        done = False
        while not done:
            MEs = Network.moduleEigengenes(exprData, colors, excludeGrey=True, grey=unassdColor)['eigengenes'] \
                if np.any(colors != unassdColor) else pd.DataFrame(index=exprData.index)
            MEs = Network.orderMEs(MEs, greyLast=False, greyName=greyName)
            if iteration == 1:
                oldMEs = MEs
            if MEs.shape[1] < 2:
                print("mergeCloseModules: less than two proper modules.", flush=True)
                print(" ..there is nothing to merge.", flush=True)
                break
            nOldMods = len(np.unique(colors))
            ConsDiss = 1 - np.corrcoef(MEs.values, rowvar=False)
            Tree = Network.hclust(squareform(ConsDiss, checks=False), method="average")
            if iteration == 1:
                oldTree = Tree
            TreeBranches = Network.cutree(Tree, cutHeight=cutHeight)[:, 0]
            for branch in np.unique(TreeBranches):
                ModulesOnThisBranch = MEs.columns[TreeBranches == branch]
                if len(ModulesOnThisBranch) > 1:
                    ColorsOnThisBranch = [x[2:] for x in ModulesOnThisBranch]
                    for color in ColorsOnThisBranch[1:]:
                        colors[colors == color] = ColorsOnThisBranch[0]
            nNewMods = len(np.unique(colors))
            if nNewMods < nOldMods and iterate:
                iteration = iteration + 1
            else:
                done = True

        newMEs = None
        if getNewMEs:
            print("  Calculating new MEs...", flush=True)
            if np.any(colors != unassdColor):
                newMEs = Network.moduleEigengenes(exprData, colors, excludeGrey=True, grey=unassdColor)['eigengenes']
                newMEs = Network.orderMEs(newMEs, greyLast=True, greyName=greyName)
            else:
                newMEs = pd.DataFrame(index=exprData.index)
            if newMEs.shape[1] > 1:
                Tree = Network.hclust(squareform(1 - np.corrcoef(newMEs.values, rowvar=False), checks=False),
                                      method="average")
            else:
                Tree = None

        return {"colors": colors, "dendro": Tree, "oldDendro": oldTree, "cutHeight": cutHeight,
                "oldMEs": oldMEs, "newMEs": newMEs, "allOK": True}

    @staticmethod
    def projectiveKMeans(datExpr, preferredSize=5000, seed=12345):
        """
        Pre-cluster genes into blocks of at most preferredSize genes

        :param datExpr: expression data, samples in rows and genes in columns
        :type datExpr: pandas dataframe
        :param preferredSize: maximum number of genes in a block (default: 5000)
        :type preferredSize: int
        :param seed: seed of the k-means clustering (default: 12345)
        :type seed: int

        :return: block index of each gene, 0 for the largest block
        :rtype: ndarray
        """
        nGenes = datExpr.shape[1]
        if nGenes <= preferredSize:
            return np.repeat(0, nGenes)

        nCenters = int(min(nGenes / 20, 100 * nGenes / preferredSize))
        print(f"{OKCYAN}projectiveKMeans: pre-clustering {nGenes} genes around {nCenters} centers...{ENDC}")
        profiles = np.nan_to_num(scale(datExpr.values.astype(float)).T)
        km = KMeans(n_clusters=nCenters, random_state=seed, n_init=10).fit(profiles)

        # order clusters so that similar centers end up next to each other
        centerOrder = dendrogram(linkage(km.cluster_centers_, method="average", metric="correlation"),
                                 no_plot=True)['leaves']

        blocks = np.repeat(-1, nGenes)
        block = 0
        blockSize = 0
        for center in centerOrder:
            members = np.where(km.labels_ == center)[0]
            if len(members) > preferredSize:
                # genes closest to their center first
                dist = np.linalg.norm(profiles[members] - km.cluster_centers_[center], axis=1)
                members = members[np.argsort(dist)]
                if blockSize > 0:
                    block = block + 1
                for start in range(0, len(members), preferredSize):
                    blocks[members[start:start + preferredSize]] = block
                    block = block + 1
                blockSize = 0
                continue
            if blockSize + len(members) > preferredSize:
                block = block + 1
                blockSize = 0
            blocks[members] = block
            blockSize = blockSize + len(members)

        # number blocks by decreasing size
        labels, sizes = np.unique(blocks, return_counts=True)
        order = np.argsort(-sizes, kind='stable')
        newBlocks = {labels[o]: rank for rank, o in enumerate(order)}
        blocks = np.array([newBlocks[b] for b in blocks])

        print("\tDone..\n")

        return blocks

    @staticmethod
    def blockwiseModules(datExpr, power=6, networkType="signed", TOMType="signed", TOMDenom="min",
                         maxBlockSize=5000, minModuleSize=30, deepSplit=2, pamStage=True, pamRespectsDendro=True,
                         minCoreKME=0.5, minCoreKMESize=None, minKMEtoStay=0.3, mergeCutHeight=0.25,
                         naColor="grey", seed=12345):
        """
        Automatic network construction and module detection, with genes split into blocks of at most maxBlockSize.

        :param datExpr: expression data, samples in rows and genes in columns
        :type datExpr: pandas dataframe
        :param power: soft-thresholding power for network construction (default: 6)
        :type power: int
        :param networkType: network type (default: "signed")
        :type networkType: str
        :param TOMType: type of topological overlap (default: "signed")
        :type TOMType: str
        :param TOMDenom: "min" or "mean" (default: "min")
        :type TOMDenom: str
        :param maxBlockSize: maximum block size for module detection (default: 5000)
        :type maxBlockSize: int
        :param minModuleSize: minimum module size for module detection (default: 30)
        :type minModuleSize: int
        :param deepSplit: sensitivity to module splitting, 0 to 4 (default: 2)
        :type deepSplit: int
        :param pamStage: should the PAM stage of the tree cut be used (default: True)
        :type pamStage: bool
        :param pamRespectsDendro: should the PAM stage respect the dendrogram (default: True)
        :type pamRespectsDendro: bool
        :param minCoreKME: module core kME threshold (default: 0.5)
        :type minCoreKME: float
        :param minCoreKMESize: minimum number of genes with kME above minCoreKME in a module (default: minModuleSize/3)
        :type minCoreKMESize: int
        :param minKMEtoStay: genes whose kME with their module is below this value are unassigned (default: 0.3)
        :type minKMEtoStay: float
        :param mergeCutHeight: dendrogram cut height for module merging (default: 0.25)
        :type mergeCutHeight: float
        :param naColor: color of unassigned genes (default: "grey")
        :type naColor: str
        :param seed: seed for the block pre-clustering (default: 12345)
        :type seed: int

        :return: dictionary with "colors", "unmergedColors", "MEs", "blocks", "dendrograms", "blockGenes"
        :rtype: dict
        """
        if minCoreKMESize is None:
            minCoreKMESize = minModuleSize / 3

        blocks = Network.projectiveKMeans(datExpr, preferredSize=maxBlockSize, seed=seed)
        nBlocks = len(np.unique(blocks))
        signed = networkType != "unsigned"

        labels = np.repeat(0, datExpr.shape[1])
        dendrograms = {}
        blockGenes = {}
        labelOffset = 0
        for block in range(nBlocks):
            print(f"{OKCYAN}Working on block {block + 1} of {nBlocks}...{ENDC}")
            index = np.where(blocks == block)[0]
            blockExpr = datExpr.iloc[:, index]
            blockGenes[block] = datExpr.columns[index]
            if len(index) < 2:
                print(f"{WARNING}Block {block + 1} has less than two genes; its genes stay unassigned.{ENDC}")
                continue

            adjacency = Network.adjacency(blockExpr, adjacencyType=networkType, power=power)
            TOM = Network.TOMsimilarity(adjacency, TOMType=TOMType, TOMDenom=TOMDenom)
            dissTOM = (1 - TOM).round(decimals=8)
            geneTree = linkage(squareform(dissTOM, checks=False), method="average")

            blockLabels = Network.cutreeHybrid(dendro=geneTree, distM=dissTOM, deepSplit=deepSplit,
                                               pamStage=pamStage, pamRespectsDendro=pamRespectsDendro,
                                               minClusterSize=minModuleSize)

            # check module cores and member genes by their module membership
            blockModules = np.unique(blockLabels[blockLabels != 0])
            if len(blockModules) > 0:
                blockMEs = Network.moduleEigengenes(blockExpr, blockLabels, excludeGrey=True)['eigengenes']
                for module in blockModules:
                    modGenes = np.where(blockLabels == module)[0]
                    corEval = np.array([np.corrcoef(blockExpr.iloc[:, g], blockMEs["ME" + str(module)])[0, 1]
                                        for g in modGenes])
                    if not signed:
                        corEval = np.abs(corEval)
                    if np.sum(corEval > minCoreKME) < minCoreKMESize:
                        print(f"{WARNING}Module {module} in block {block + 1} does not have enough genes with "
                              f"kME above {minCoreKME}; removing it.{ENDC}")
                        blockLabels[modGenes] = 0
                    else:
                        blockLabels[modGenes[np.logical_not(corEval >= minKMEtoStay)]] = 0

            blockLabels[blockLabels != 0] = blockLabels[blockLabels != 0] + labelOffset
            if np.any(blockLabels != 0):
                labelOffset = np.max(blockLabels)
            labels[index] = blockLabels
            dendrograms[block] = geneTree

        # re-rank labels by module size after the kME checks
        present, sizes = np.unique(labels[labels != 0], return_counts=True)
        order = np.argsort(-sizes, kind='stable')
        newLabels = {present[o]: rank + 1 for rank, o in enumerate(order)}
        labels = np.array([newLabels.get(label, 0) for label in labels], dtype=int)

        unmergedColors = Network.labels2colors(labels, naColor=naColor)
        merge = Network.mergeCloseModules(datExpr, unmergedColors, cutHeight=mergeCutHeight, unassdColor=naColor)

        return {"colors": merge['colors'], "unmergedColors": unmergedColors, "MEs": merge['newMEs'],
                "blocks": blocks, "dendrograms": dendrograms, "blockGenes": blockGenes,
                "mergeDendro": merge['dendro'], "oldMEs": merge['oldMEs']}

    @staticmethod
    def signedKME(datExpr, datME):
        """
        Calculation of (signed) eigengene-based connectivity, also known as module membership.

        :param datExpr: expression data, samples in rows and genes in columns
        :type datExpr: pandas dataframe
        :param datME: module eigengenes, samples in rows
        :type datME: pandas dataframe

        :return: kME table, genes in rows and modules in columns
        :rtype: pandas dataframe
        """
        if datExpr.shape[0] != datME.shape[0]:
            raise ValueError("Number of samples (rows) in 'datExpr' and 'datME' must be the same.")
        nSamples = datExpr.shape[0]
        expr = scale(datExpr.values.astype(float))
        MEs = scale(datME.values.astype(float))
        kME = np.matmul(expr.T, MEs) / nSamples
        return pd.DataFrame(kME, index=datExpr.columns,
                            columns=["kME" + str(name)[2:] for name in datME.columns])

    @staticmethod
    def intramodularConnectivity(adjMat, colors, scaleByMax=False):
        """
        Calculates intramodular connectivity, i.e., connectivity of nodes to other nodes within the same module.

        :param adjMat: adjacency matrix
        :type adjMat: ndarray or pandas dataframe
        :param colors: module color of each gene
        :type colors: list or ndarray
        :param scaleByMax: should intramodular connectivity be scaled by the maximum in each module (default: False)
        :type scaleByMax: bool

        :return: table with kTotal, kWithin, kOut and kDiff for each gene
        :rtype: pandas dataframe
        """
        index = adjMat.index if isinstance(adjMat, pd.DataFrame) else None
        adjMat = np.array(adjMat, dtype=float)
        colors = np.asarray(colors)
        if adjMat.shape[0] != len(colors):
            raise ValueError("Dimensions of 'adjMat' and length of 'colors' differ.")
        np.fill_diagonal(adjMat, 0)
        adjMat = np.nan_to_num(adjMat, nan=0)

        kTotal = adjMat.sum(axis=1)
        kWithin = np.zeros(len(colors))
        for color in np.unique(colors):
            restrict = colors == color
            kWithin[restrict] = adjMat[np.ix_(restrict, restrict)].sum(axis=1)
            if scaleByMax and kWithin[restrict].max() > 0:
                kWithin[restrict] = kWithin[restrict] / kWithin[restrict].max()
        kOut = kTotal - kWithin
        if scaleByMax:
            kOut = np.nan
        kDiff = kWithin - kOut

        return pd.DataFrame({'kTotal': kTotal, 'kWithin': kWithin, 'kOut': kOut, 'kDiff': kDiff}, index=index)

    @staticmethod
    def corPvalue(cor, nSamples):
        """
        Student asymptotic p-value for given correlations
        """
        T = np.sqrt(nSamples - 2) * (cor / np.sqrt(1 - (cor ** 2)))
        pt = 1 - pd.DataFrame(t.cdf(np.abs(T), nSamples - 2), index=T.index, columns=T.columns)
        return 2 * pt
